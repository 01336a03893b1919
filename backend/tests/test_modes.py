import pytest

from focuslab.modes import (
    LEGACY_MODE_MAPPING,
    LEGACY_MODES,
    PRESETS,
    FocusMode,
    is_legacy,
    map_legacy_mode,
    resolve_durations,
)


@pytest.mark.parametrize("legacy, enhanced, durations", [
    (FocusMode.POMODORO, FocusMode.POMODORO_CLASSIC, (25, 5)),
    (FocusMode.DEEP_WORK, FocusMode.DEEP_WORK_90, (90, 20)),
    (FocusMode.CUSTOM, FocusMode.CUSTOM, None),
    (FocusMode.MARATHON, FocusMode.MARATHON, (120, 30)),
])
def test_legacy_mapping_table(legacy, enhanced, durations):
    mapping = map_legacy_mode(legacy)
    assert mapping.enhanced == enhanced
    assert (tuple(mapping.preset) if mapping.preset else None) == durations


def test_mapping_is_total_over_legacy_modes():
    assert set(LEGACY_MODE_MAPPING) == set(LEGACY_MODES)
    for mode in LEGACY_MODES:
        assert is_legacy(mode)
        assert map_legacy_mode(mode) == LEGACY_MODE_MAPPING[mode]
    assert not any(is_legacy(m) for m in PRESETS if m not in LEGACY_MODES)


def test_every_non_custom_mode_has_durations():
    for mode in FocusMode:
        focus, rest = resolve_durations(mode)
        if mode == FocusMode.CUSTOM:
            assert (focus, rest) == (None, None)
        else:
            assert focus > 0 and rest >= 0


def test_enhanced_modes_map_to_themselves():
    mapping = map_legacy_mode(FocusMode.RULE_52_17)
    assert mapping.enhanced == FocusMode.RULE_52_17
    assert mapping.preset == PRESETS[FocusMode.RULE_52_17]


def test_caller_durations_override_preset():
    assert resolve_durations(FocusMode.POMODORO_CLASSIC, focus=30) == (30, 5)
    assert resolve_durations(FocusMode.TIMEBOXING_45) == (45, 0)
    assert resolve_durations("CUSTOM", 40, 10) == (40, 10)
