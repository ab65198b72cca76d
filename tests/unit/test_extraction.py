"""Unit tests for payload field extraction and its fallback order."""

from claude_monitor.native.extraction import (
    EXTRACTORS,
    as_percent,
    extract_usage,
    from_flat_fields,
    from_raw_text,
    from_sections,
)


def test_flat_fields_win():
    data = {
        "primaryPercent": 12,
        "sessionPercent": 33,
        "weeklyAllPercent": 55,
        "weeklySonnetPercent": 7,
        "sessionReset": "in 1 hr 5 min",
        "weeklyReset": "Thu 10:00 AM",
        "sections": [
            {"type": "all_models", "percentUsed": 99, "resetTime": "Mon 1:00 AM"},
            {"type": "sonnet_only", "percentUsed": 98},
        ],
        "rawText": "Resets in 9 hr",
    }
    fields = extract_usage(data)
    assert fields.primary_percent == 12
    assert fields.session_percent == 33
    assert fields.weekly_all_percent == 55
    assert fields.weekly_sonnet_percent == 7
    assert fields.session_reset == "in 1 hr 5 min"
    assert fields.weekly_reset == "Thu 10:00 AM"


def test_sections_fill_missing_weekly_values():
    data = {
        "primaryPercent": 20,
        "sections": [
            {"type": "session", "percentUsed": 1},
            {"type": "all_models", "percentUsed": 61, "resetTime": "Thu 10:00 AM"},
            {"type": "all_models", "percentUsed": 5, "resetTime": "ignored"},
            {"type": "sonnet_only", "percentUsed": 14},
        ],
    }
    fields = extract_usage(data)
    assert fields.weekly_all_percent == 61
    assert fields.weekly_reset == "Thu 10:00 AM"
    assert fields.weekly_sonnet_percent == 14


def test_sections_only_fill_what_flat_fields_left_empty():
    data = {
        "weeklyAllPercent": 30,
        "sections": [
            {"type": "all_models", "percentUsed": 90},
            {"type": "sonnet_only", "percentUsed": 8},
        ],
    }
    fields = extract_usage(data)
    assert fields.weekly_all_percent == 30
    assert fields.weekly_sonnet_percent == 8


def test_raw_text_session_reset_last_resort():
    data = {"primaryPercent": 5, "rawText": "Current session\nResets in 4 hr 2 min\nWeekly limits"}
    assert extract_usage(data).session_reset == "in 4 hr 2 min"


def test_raw_text_not_used_when_session_reset_present():
    data = {"sessionReset": "in 1 hr", "rawText": "Reset in 7 hr"}
    assert extract_usage(data).session_reset == "in 1 hr"


def test_session_percent_falls_back_to_primary():
    assert extract_usage({"primaryPercent": 44}).session_percent == 44


def test_primary_percent_only_from_primary_field():
    fields = extract_usage({"sessionPercent": 10})
    assert fields.primary_percent is None
    assert fields.session_percent == 10


def test_empty_data():
    fields = extract_usage({})
    assert fields.model_dump() == {
        "primary_percent": None,
        "session_percent": None,
        "weekly_all_percent": None,
        "weekly_sonnet_percent": None,
        "session_reset": None,
        "weekly_reset": None,
    }


def test_zero_is_an_observation():
    fields = extract_usage({"weeklyAllPercent": 0, "sections": [{"type": "all_models", "percentUsed": 50}]})
    assert fields.weekly_all_percent == 0


def test_blank_reset_strings_treated_as_missing():
    data = {"weeklyReset": "  ", "sections": [{"type": "all_models", "percentUsed": 1, "resetTime": "Fri 9:00 AM"}]}
    assert extract_usage(data).weekly_reset == "Fri 9:00 AM"


def test_extractors_tolerate_bad_shapes():
    assert from_sections({"sections": "nope"}) == {}
    assert from_sections({"sections": [None, 3, {"type": "sonnet_only"}]}) == {"weekly_sonnet_percent": None}
    assert from_raw_text({"rawText": 42}) == {}
    assert from_raw_text({"rawText": "no reset phrase"}) == {}
    assert from_flat_fields({"weeklyAllPercent": "abc"})["weekly_all_percent"] is None


def test_extractor_order():
    assert EXTRACTORS == (from_flat_fields, from_sections, from_raw_text)


def test_as_percent():
    assert as_percent(3) == 3.0
    assert as_percent("45%") == 45.0
    assert as_percent(False) is None
    assert as_percent([1]) is None
