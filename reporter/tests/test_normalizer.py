import json
from datetime import date, datetime

import pytest

from reporter.app.schemas.template_model import ChecklistStatus
from reporter.app.services.normalizer import (
    NO_DATA,
    NO_NOTES,
    NOT_RECORDED,
    PLACEHOLDER,
    UNKNOWN_DRIVER,
    build_template_model,
    choose_items,
    format_fuel_level,
    format_odometer,
    normalize_checklist_value,
    normalize_items,
    normalize_record,
    parse_maybe_json,
    pick_date,
    pick_shift_window,
    pick_string,
)

NOW = datetime(2024, 5, 17, 14, 30)


# ------------------------------------------------------------------
# Checklist values
# ------------------------------------------------------------------

@pytest.mark.parametrize(
    "raw, expected",
    [
        (True, ChecklistStatus.OK),
        (False, ChecklistStatus.ATTENTION),
        (None, ChecklistStatus.NOT_APPLICABLE),
        ("banana", ChecklistStatus.NOT_APPLICABLE),
        ("  OK ", ChecklistStatus.OK),
        ("tak", ChecklistStatus.OK),
        ("Defect", ChecklistStatus.ATTENTION),
        ("nie", ChecklistStatus.ATTENTION),
        ("n/a", ChecklistStatus.NOT_APPLICABLE),
        (3, ChecklistStatus.NOT_APPLICABLE),
    ],
)
def test_normalize_checklist_value(raw, expected):
    assert normalize_checklist_value(raw) is expected


# ------------------------------------------------------------------
# JSON handling
# ------------------------------------------------------------------

def test_parse_maybe_json_leaves_invalid_documents_untouched():
    assert parse_maybe_json("{not json}") == "{not json}"
    assert parse_maybe_json("plain") == "plain"
    assert parse_maybe_json(' [1, 2] ') == [1, 2]


def test_normalize_record_decodes_nested_json_strings():
    inner = json.dumps({"items": [{"label": "Brakes", "value": True}]})
    record = {"checklist_payload": json.dumps({"nested": inner})}

    normalized = normalize_record(record)

    assert normalized["checklist_payload"]["nested"]["items"][0]["label"] == "Brakes"


@pytest.mark.parametrize(
    "record",
    [
        {},
        {"a": "[1, 2, {\"b\": \"{\\\"c\\\": 1}\"}]"},
        {"a": "{broken", "b": ["x", "{\"y\": null}"]},
        {"checklist_state": {"tires": True, "lights": "false"}},
        {"deep": json.dumps(json.dumps({"k": [1, "2"]}))},
    ],
)
def test_normalize_record_is_idempotent(record):
    once = normalize_record(record)
    assert normalize_record(once) == once


# ------------------------------------------------------------------
# Pickers
# ------------------------------------------------------------------

def test_pick_string_returns_first_non_blank_trimmed():
    assert pick_string([None, "   ", "  Jan Kowalski  ", "other"], "fallback") == "Jan Kowalski"


def test_pick_string_prefers_strings_over_numbers():
    assert pick_string([42, "", "ABC"], "fallback") == "ABC"
    assert pick_string([None, 42.0], "fallback") == "42"


def test_pick_string_falls_back_when_nothing_usable():
    assert pick_string([None, "", "   ", True, float("nan")], "fallback") == "fallback"
    assert pick_string([], "fallback") == "fallback"


def test_pick_date_skips_unparseable_candidates():
    assert pick_date(["not a date", None, "2024-03-05T08:00:00Z"]) == "05.03.2024"
    assert pick_date(["05.03.2024"]) == "05.03.2024"
    assert pick_date([date(2023, 12, 1)]) == "01.12.2023"
    assert pick_date([1700000000000]) == "14.11.2023"
    assert pick_date(["garbage", ""]) is None


@pytest.mark.parametrize(
    "value",
    [
        "2024-05-01T08:30:00.12345+00:00",
        "2024-05-01T08:30:00.1+00:00",
    ],
)
def test_pick_date_accepts_postgres_fraction_lengths(value):
    assert pick_date([value, "2030-01-01"]) == "01.05.2024"


def test_shift_window_from_trimmed_fraction_timestamps():
    window = pick_shift_window(
        [],
        ["2024-05-01T06:05:00.5+00:00"],
        ["2024-05-01T14:45:00.12345+00:00"],
    )

    assert window == "06:05 - 14:45"


def test_shift_window_variants():
    assert pick_shift_window(["06:00 - 14:00"], [], []) == "06:00 - 14:00"
    assert pick_shift_window([], ["2024-05-17T06:15:00"], ["14:45:00"]) == "06:15 - 14:45"
    assert pick_shift_window([], ["06:15"], []) == "from 06:15"
    assert pick_shift_window([], [], ["bogus"]) == PLACEHOLDER


def test_readings_are_formatted_with_units():
    assert format_odometer([None, "123456"]) == "123 456 km"
    assert format_odometer(["n/a"]) == PLACEHOLDER
    assert format_fuel_level([80]) == "80%"
    assert format_fuel_level(["62,6"]) == "63%"


# ------------------------------------------------------------------
# Items
# ------------------------------------------------------------------

def test_string_entries_get_positional_labels():
    items = normalize_items(["ok", "", "failed"])
    assert [(i.label, i.status) for i in items] == [
        ("Item 1", ChecklistStatus.OK),
        ("Item 2", ChecklistStatus.ATTENTION),
    ]


def test_object_entries_use_label_and_value_keys():
    items = normalize_items(
        [
            {"question": "Oil level", "answer": "yes"},
            {"name": "Horn", "checked": False},
            {"title": "Wipers"},
        ]
    )
    assert items[0].label == "Oil level"
    assert items[0].status is ChecklistStatus.OK
    assert items[1].value == "Attention"
    assert items[1].status is ChecklistStatus.ATTENTION
    assert items[2].value == NOT_RECORDED
    assert items[2].status is ChecklistStatus.NOT_APPLICABLE


def test_object_sources_are_flattened_skipping_nested_values():
    items = normalize_items({"tires": True, "meta": {"x": 1}, "list": [1], "mirrors": "ok"})
    assert [i.label for i in items] == ["tires", "mirrors"]


def test_choose_items_uses_first_non_empty_source():
    items = choose_items([None, [], {"only": {"nested": True}}, {"lights": False}])
    assert [i.label for i in items] == ["lights"]


# ------------------------------------------------------------------
# Template model
# ------------------------------------------------------------------

def test_scenario_flat_checklist_state():
    report = {
        "id": 7,
        "checklist_state": {"tires": True, "lights": False},
        "start_odometer": 1000,
        "fuel_level": 80,
    }

    model = build_template_model(report, None, 7, now=NOW)

    assert [(i.label, i.status) for i in model.items] == [
        ("tires", ChecklistStatus.OK),
        ("lights", ChecklistStatus.ATTENTION),
    ]
    assert model.defects_count == 1
    assert model.defects[0].label == "lights"
    assert model.start_odometer == "1 000 km"
    assert model.fuel_level == "80%"


def test_scenario_double_encoded_payload():
    report = {"checklist_payload": '{"items":[{"label":"Brakes","value":true}]}'}

    model = build_template_model(report, None, 3, now=NOW)

    assert len(model.items) == 1
    assert model.items[0].label == "Brakes"
    assert model.items[0].value == "OK"
    assert model.items[0].status is ChecklistStatus.OK


def test_overrides_take_priority_over_report():
    report = {"driver_name": "Stored Driver", "notes": "stored"}
    overrides = {"driverName": "  Override Driver ", "driver": {"name": "nested"}}

    model = build_template_model(report, overrides, 1, now=NOW)

    assert model.driver_name == "Override Driver"
    assert model.notes == "stored"


def test_missing_data_uses_fallbacks():
    model = build_template_model({}, None, 99, now=NOW)

    assert model.driver_name == UNKNOWN_DRIVER
    assert model.vehicle_registration == NO_DATA
    assert model.depot_name == PLACEHOLDER
    assert model.notes == NO_NOTES
    assert model.report_number == "99"
    assert model.checklist_date == "17.05.2024"
    assert model.generated_at == "17.05.2024 14:30"
    assert len(model.items) == 1
    assert model.items[0].value == NO_DATA
    assert model.defects_count == 0


def test_model_is_deterministic_for_identical_inputs():
    report = {"checklist_state": '{"a": true, "b": "fail"}', "completed_at": "2024-01-02"}
    first = build_template_model(report, {"notes": "x"}, 5, now=NOW)
    second = build_template_model(report, {"notes": "x"}, 5, now=NOW)
    assert first == second
    assert first.checklist_date == "02.01.2024"
