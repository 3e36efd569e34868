"""
Muscle groups for strength-session load.

Each group carries a systemic-fatigue factor (how much whole-body recovery
cost a session on it imposes) and a typical local recovery time. Multiple
selections compound by rule, not by summation: combined stress is
sub-additive but still above any single group.
"""

from enum import Enum
from typing import Iterable, List


class MuscleGroupCategory(str, Enum):
    SPECIFIC_MUSCLE = "specific_muscle"
    MOVEMENT_PATTERN = "movement_pattern"
    COMPOUND = "compound"
    METABOLIC = "metabolic"


class MuscleGroup(str, Enum):
    LEGS = "legs"
    BACK = "back"
    CHEST = "chest"
    SHOULDERS = "shoulders"
    ARMS = "arms"
    CORE = "core"
    PUSH = "push"
    PULL = "pull"
    FULL_BODY = "full_body"
    CONDITIONING = "conditioning"

    @property
    def fatigue_factor(self) -> float:
        return SYSTEMIC_FATIGUE_FACTORS[self]

    @property
    def recovery_hours(self) -> int:
        return RECOVERY_HOURS[self]

    @property
    def category(self) -> MuscleGroupCategory:
        return CATEGORIES[self]


SYSTEMIC_FATIGUE_FACTORS = {
    MuscleGroup.LEGS: 1.5,
    MuscleGroup.BACK: 1.2,
    MuscleGroup.CHEST: 1.0,
    MuscleGroup.SHOULDERS: 0.9,
    MuscleGroup.ARMS: 0.7,
    MuscleGroup.CORE: 0.8,
    MuscleGroup.PUSH: 1.1,
    MuscleGroup.PULL: 1.2,
    MuscleGroup.FULL_BODY: 1.4,
    MuscleGroup.CONDITIONING: 1.3,
}

RECOVERY_HOURS = {
    MuscleGroup.LEGS: 72,
    MuscleGroup.BACK: 48,
    MuscleGroup.CHEST: 48,
    MuscleGroup.SHOULDERS: 36,
    MuscleGroup.ARMS: 36,
    MuscleGroup.CORE: 24,
    MuscleGroup.PUSH: 48,
    MuscleGroup.PULL: 48,
    MuscleGroup.FULL_BODY: 72,
    MuscleGroup.CONDITIONING: 36,
}

CATEGORIES = {
    MuscleGroup.LEGS: MuscleGroupCategory.SPECIFIC_MUSCLE,
    MuscleGroup.BACK: MuscleGroupCategory.SPECIFIC_MUSCLE,
    MuscleGroup.CHEST: MuscleGroupCategory.SPECIFIC_MUSCLE,
    MuscleGroup.SHOULDERS: MuscleGroupCategory.SPECIFIC_MUSCLE,
    MuscleGroup.ARMS: MuscleGroupCategory.SPECIFIC_MUSCLE,
    MuscleGroup.CORE: MuscleGroupCategory.SPECIFIC_MUSCLE,
    MuscleGroup.PUSH: MuscleGroupCategory.MOVEMENT_PATTERN,
    MuscleGroup.PULL: MuscleGroupCategory.MOVEMENT_PATTERN,
    MuscleGroup.FULL_BODY: MuscleGroupCategory.COMPOUND,
    MuscleGroup.CONDITIONING: MuscleGroupCategory.METABOLIC,
}

FULL_BODY_FACTOR = 1.4
FULL_BODY_CONDITIONING_BONUS = 0.1
UPPER_LOWER_FACTOR = 1.6
PUSH_PULL_VOLUME_BONUS = 0.15
SAME_CATEGORY_BONUS = 0.1
CONDITIONING_BONUS = 0.2
MIXED_BONUS = 0.05

# Neutral factor when nothing was selected
DEFAULT_FATIGUE_FACTOR = 1.0


def parse_muscle_groups(values: Iterable[str]) -> List[MuscleGroup]:
    """Parse stored names, ignoring unknown ones."""
    groups = []
    for value in values or []:
        try:
            groups.append(MuscleGroup(value))
        except ValueError:
            continue
    return groups


PUSH_GROUPS = (MuscleGroup.PUSH, MuscleGroup.CHEST, MuscleGroup.SHOULDERS)
PULL_GROUPS = (MuscleGroup.PULL, MuscleGroup.BACK)


def combined_fatigue_factor(groups: Iterable[MuscleGroup]) -> float:
    """
    Systemic fatigue factor for one session that trained all of `groups`.

    Rules, first match wins: full body, upper+lower split, push+pull,
    several specific muscles, conditioning finisher, anything else.
    """
    selected = list(dict.fromkeys(groups))
    if not selected:
        return DEFAULT_FATIGUE_FACTOR
    if len(selected) == 1:
        return selected[0].fatigue_factor

    present = set(selected)
    push = next((g for g in selected if g in PUSH_GROUPS), None)
    pull = next((g for g in selected if g in PULL_GROUPS), None)

    if MuscleGroup.FULL_BODY in present:
        bonus = FULL_BODY_CONDITIONING_BONUS if MuscleGroup.CONDITIONING in present else 0.0
        return FULL_BODY_FACTOR + bonus

    if MuscleGroup.LEGS in present and (push or pull):
        return UPPER_LOWER_FACTOR

    if push and pull:
        return (push.fatigue_factor + pull.fatigue_factor) / 2 + PUSH_PULL_VOLUME_BONUS

    specific = [g for g in selected if g.category == MuscleGroupCategory.SPECIFIC_MUSCLE]
    if len(specific) >= 2:
        return max(g.fatigue_factor for g in specific) + SAME_CATEGORY_BONUS

    if MuscleGroup.CONDITIONING in present:
        others = [g.fatigue_factor for g in selected if g != MuscleGroup.CONDITIONING]
        return max(others) + CONDITIONING_BONUS

    return max(g.fatigue_factor for g in selected) + MIXED_BONUS


def longest_recovery_hours(groups: Iterable[MuscleGroup]) -> int:
    selected = list(groups)
    if not selected:
        return 0
    return max(g.recovery_hours for g in selected)
