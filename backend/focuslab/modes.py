"""Focus modes, their preset durations and the legacy-mode mapping.

Older clients send one of four legacy modes (``POMODORO``, ``DEEP_WORK``,
``CUSTOM``, ``MARATHON``). ``LEGACY_MODE_MAPPING`` maps each of them to
the mode used today plus its default durations; the table is total over
``LEGACY_MODES``.
"""

from enum import Enum
from typing import Dict, NamedTuple, Optional, Tuple


class FocusMode(str, Enum):
    # legacy
    POMODORO = "POMODORO"
    DEEP_WORK = "DEEP_WORK"
    CUSTOM = "CUSTOM"
    MARATHON = "MARATHON"

    POMODORO_CLASSIC = "POMODORO_CLASSIC"
    POMODORO_EXTENDED = "POMODORO_EXTENDED"
    DEEP_WORK_90 = "DEEP_WORK_90"
    DEEP_WORK_120 = "DEEP_WORK_120"
    TIMEBOXING_45 = "TIMEBOXING_45"
    TIMEBOXING_60 = "TIMEBOXING_60"
    RULE_52_17 = "RULE_52_17"
    RULE_90_20 = "RULE_90_20"
    MINDFUL_25 = "MINDFUL_25"
    MINDFUL_45 = "MINDFUL_45"
    FEYNMAN_BLOCKS = "FEYNMAN_BLOCKS"
    ACTIVE_RECALL_30 = "ACTIVE_RECALL_30"
    HABIT_21_DAYS = "HABIT_21_DAYS"
    HABIT_66_DAYS = "HABIT_66_DAYS"


LEGACY_MODES = (FocusMode.POMODORO, FocusMode.DEEP_WORK, FocusMode.CUSTOM, FocusMode.MARATHON)


class Preset(NamedTuple):
    focus: int
    rest: int


# (focus minutes, break minutes)
PRESETS: Dict[FocusMode, Preset] = {
    FocusMode.POMODORO_CLASSIC: Preset(25, 5),
    FocusMode.POMODORO_EXTENDED: Preset(50, 10),
    FocusMode.DEEP_WORK_90: Preset(90, 20),
    FocusMode.DEEP_WORK_120: Preset(120, 30),
    FocusMode.TIMEBOXING_45: Preset(45, 0),
    FocusMode.TIMEBOXING_60: Preset(60, 0),
    FocusMode.RULE_52_17: Preset(52, 17),
    FocusMode.RULE_90_20: Preset(90, 20),
    FocusMode.MINDFUL_25: Preset(25, 5),
    FocusMode.MINDFUL_45: Preset(45, 10),
    FocusMode.FEYNMAN_BLOCKS: Preset(30, 10),
    FocusMode.ACTIVE_RECALL_30: Preset(30, 10),
    FocusMode.HABIT_21_DAYS: Preset(25, 5),
    FocusMode.HABIT_66_DAYS: Preset(25, 5),
    FocusMode.MARATHON: Preset(120, 30),
}


class LegacyMapping(NamedTuple):
    enhanced: FocusMode
    preset: Optional[Preset]


LEGACY_MODE_MAPPING: Dict[FocusMode, LegacyMapping] = {
    FocusMode.POMODORO: LegacyMapping(FocusMode.POMODORO_CLASSIC, PRESETS[FocusMode.POMODORO_CLASSIC]),
    FocusMode.DEEP_WORK: LegacyMapping(FocusMode.DEEP_WORK_90, PRESETS[FocusMode.DEEP_WORK_90]),
    FocusMode.CUSTOM: LegacyMapping(FocusMode.CUSTOM, None),
    FocusMode.MARATHON: LegacyMapping(FocusMode.MARATHON, PRESETS[FocusMode.MARATHON]),
}


def is_legacy(mode: FocusMode) -> bool:
    return mode in LEGACY_MODES


def map_legacy_mode(mode: FocusMode) -> LegacyMapping:
    """Return the current-day equivalent of ``mode``.

    Non-legacy modes map to themselves with their own preset.
    """
    mode = FocusMode(mode)
    if mode in LEGACY_MODE_MAPPING:
        return LEGACY_MODE_MAPPING[mode]
    return LegacyMapping(mode, PRESETS.get(mode))


def resolve_durations(
    mode: FocusMode,
    focus: Optional[int] = None,
    rest: Optional[int] = None,
) -> Tuple[Optional[int], Optional[int]]:
    """Fill in missing focus/break minutes from the mode's preset.

    ``CUSTOM`` has no preset, so whatever the caller gave is returned
    unchanged and the caller decides whether that is acceptable.
    """
    preset = map_legacy_mode(mode).preset
    if preset is None:
        return focus, rest
    return (focus if focus is not None else preset.focus,
            rest if rest is not None else preset.rest)
