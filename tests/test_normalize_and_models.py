from __future__ import annotations

import pytest

from tradelog.errors import ValidationFailure
from tradelog.persistence.store import SERVER_TIMESTAMP
from tradelog.schema import EntityKind
from tradelog.sync.models import Strategy, Trade, record_to_model, validate_record
from tradelog.sync.normalize import UNSET, normalize_payload, stamp_migration, stamp_update, strip_unset


def test_strip_unset_drops_unset_but_keeps_none():
    assert strip_unset({"a": 1, "b": UNSET, "c": None}) == {"a": 1, "c": None}


def test_normalize_injects_owner_and_drops_id():
    original = {"id": "tag_1", "label": "FOMO", "color": UNSET}
    out = normalize_payload(original, "u1", EntityKind.TAG)
    assert out == {"label": "FOMO", "userId": "u1"}
    # input untouched
    assert original["id"] == "tag_1"
    assert original["color"] is UNSET


def test_normalize_owner_id_wins_over_supplied_user_id():
    out = normalize_payload({"userId": "someone-else"}, "u1", EntityKind.ACCOUNT)
    assert out["userId"] == "u1"


def test_normalize_trade_timestamp_defaults_to_server_time():
    out = normalize_payload({"symbol": "EURUSD"}, "u1", EntityKind.TRADE)
    assert out["timestamp"] is SERVER_TIMESTAMP

    kept = normalize_payload({"symbol": "EURUSD", "timestamp": 1700000000000}, "u1", EntityKind.TRADE)
    assert kept["timestamp"] == 1700000000000


def test_normalize_update_does_not_touch_trade_timestamp():
    out = normalize_payload({"pnl": 5}, "u1", EntityKind.TRADE, creating=False)
    assert "timestamp" not in out


def test_normalize_only_trades_get_a_timestamp():
    assert "timestamp" not in normalize_payload({"label": "x"}, "u1", EntityKind.TAG)


def test_normalize_is_total_for_odd_inputs():
    assert normalize_payload(None, "u1", EntityKind.TAG) == {"userId": "u1"}
    assert normalize_payload(object(), "u1", EntityKind.TAG) == {"userId": "u1"}


def test_stamps():
    assert stamp_update({"a": 1})["updatedAt"] is SERVER_TIMESTAMP
    assert stamp_migration({"a": 1})["migratedAt"] is SERVER_TIMESTAMP


def test_validate_trade_maps_snake_case_to_wire_names_and_keeps_extensions():
    wire = validate_record(
        EntityKind.TRADE,
        {"symbol": "EURUSD", "entry_price": 1.1, "riskRewardRatio": 2, "customField": {"k": "v"}},
    )
    assert wire == {"symbol": "EURUSD", "entryPrice": 1.1, "riskRewardRatio": 2.0, "customField": {"k": "v"}}


def test_validate_partial_record_only_emits_supplied_fields():
    assert validate_record(EntityKind.TRADE, {"pnl": -20}) == {"pnl": -20.0}
    assert validate_record(EntityKind.TRADE, {"notes": None}) == {"notes": None}


@pytest.mark.parametrize(
    "bad",
    [
        {"side": "SIDEWAYS"},
        {"rating": 9},
        {"lots": -1},
        {"pnl": "lots"},
    ],
)
def test_validate_rejects_bad_trade_fields(bad):
    with pytest.raises(ValidationFailure) as ei:
        validate_record(EntityKind.TRADE, bad)
    assert ei.value.kind == "trades"


def test_validate_tag_category_is_closed():
    with pytest.raises(ValidationFailure):
        validate_record(EntityKind.TAG, {"label": "x", "category": "other"})


def test_validate_singleton_is_free_form():
    data = {"theme": "dark", "nested": {"a": [1, 2]}}
    assert validate_record(EntityKind.SETTINGS, data) == data
    with pytest.raises(ValidationFailure):
        validate_record(EntityKind.PROFILE, {"": 1})


def test_models_are_accepted_as_input():
    strategy = Strategy(title="London breakout", items=[{"id": "c1", "text": "Wait for retest"}])
    wire = validate_record(EntityKind.STRATEGY, strip_unset(strategy))
    assert wire == {
        "title": "London breakout",
        "items": [{"id": "c1", "text": "Wait for retest"}],
    }


def test_record_to_model_gives_typed_view():
    trade = record_to_model(EntityKind.TRADE, {"id": "trade_1", "entryPrice": 1.25, "side": "LONG"})
    assert isinstance(trade, Trade)
    assert trade.entry_price == 1.25
    assert trade.extensions == {"id": "trade_1"}


def test_nested_items_only_emit_supplied_fields():
    wire = validate_record(EntityKind.STRATEGY, {"title": "B", "items": [{"text": "a"}, {"text": "b", "checked": True}]})
    assert wire == {"title": "B", "items": [{"text": "a"}, {"text": "b", "checked": True}]}
