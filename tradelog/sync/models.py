"""
Entity shapes for the journal.

Each model is a fixed set of known fields plus the extension map
(`model_extra`) holding any other keys, so unknown fields written by newer
clients survive a round-trip. Attributes are snake_case; the wire format
(Firestore field names) is camelCase.

Every known field is optional: the same model validates full records and
partial updates, and only keys the caller supplied are written back.
"""

from __future__ import annotations

from typing import Any, List, Literal, Mapping, Optional, Type

from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic.alias_generators import to_camel

from tradelog.errors import ValidationFailure
from tradelog.schema import EntityKind

TradeSide = Literal["LONG", "SHORT"]
TradeStatus = Literal["OPEN", "WIN", "LOSS", "BE"]
TradeType = Literal["Buy", "Sell"]
TagCategory = Literal["mistake", "setup", "habit", "custom"]


class JournalModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="allow",
    )

    @property
    def extensions(self) -> dict[str, Any]:
        return dict(self.model_extra or {})

    def to_wire(self) -> dict[str, Any]:
        """
        Fields the caller set (camelCase) plus the extension map, at every
        nesting level. Defaults the caller never supplied are left out.
        """
        data: dict[str, Any] = dict(self.model_extra or {})
        data.update(self.model_dump(by_alias=True, exclude_unset=True))
        return data


class Trade(JournalModel):
    symbol: Optional[str] = None
    trading_view_symbol: Optional[str] = None
    date: Optional[str] = None
    time: Optional[str] = None
    trade_time: Optional[str] = None
    session: Optional[str] = None
    side: Optional[TradeSide] = None
    status: Optional[TradeStatus] = None
    trade_type: Optional[TradeType] = None
    pnl: Optional[float] = None
    entry_price: Optional[float] = None
    exit_price: Optional[float] = None
    lots: Optional[float] = Field(default=None, ge=0)
    pips: Optional[float] = None
    rating: Optional[int] = Field(default=None, ge=1, le=5)
    strategy_id: Optional[str] = None
    tags: Optional[List[str]] = None
    notes: Optional[str] = None
    account_id: Optional[str] = None
    include_in_account: Optional[bool] = None
    commission: Optional[float] = None
    risk_reward_ratio: Optional[float] = None
    archived: Optional[bool] = None


class Account(JournalModel):
    name: Optional[str] = None
    broker: Optional[str] = None
    starting_balance: Optional[float] = None
    currency_symbol: Optional[str] = None
    commission_per_lot: Optional[float] = None
    is_main: Optional[bool] = None
    is_hidden: Optional[bool] = None
    created_at: Optional[str] = None


class ChecklistItem(JournalModel):
    id: Optional[str] = None
    text: str = ""
    checked: bool = False


class Strategy(JournalModel):
    title: Optional[str] = None
    symbol: Optional[str] = None
    items: Optional[List[ChecklistItem]] = None
    photos: Optional[List[str]] = None


class Tag(JournalModel):
    label: Optional[str] = None
    color: Optional[str] = None
    category: Optional[TagCategory] = None


MODELS: dict[EntityKind, Type[JournalModel]] = {
    EntityKind.TRADE: Trade,
    EntityKind.ACCOUNT: Account,
    EntityKind.STRATEGY: Strategy,
    EntityKind.TAG: Tag,
}


def _describe(exc: ValidationError) -> str:
    parts = []
    for err in exc.errors()[:5]:
        loc = ".".join(str(p) for p in err.get("loc", ())) or "<root>"
        parts.append(f"{loc}: {err.get('msg')}")
    more = len(exc.errors()) - len(parts)
    if more > 0:
        parts.append(f"... {more} more")
    return "; ".join(parts)


def validate_record(kind: EntityKind, data: Mapping[str, Any]) -> dict[str, Any]:
    """
    Validate a (possibly partial) record and return its wire form.

    Settings/Profile are free-form documents: only string keys are required.
    """
    if not isinstance(data, Mapping):
        raise ValidationFailure(f"{kind.singular} payload must be a mapping", kind=kind.value)

    model = MODELS.get(kind)
    if model is None:
        bad = [k for k in data if not isinstance(k, str) or not k]
        if bad:
            raise ValidationFailure(f"{kind.singular} keys must be non-empty strings: {bad!r}", kind=kind.value)
        return dict(data)

    try:
        return model.model_validate(dict(data)).to_wire()
    except ValidationError as e:
        raise ValidationFailure(f"invalid {kind.singular}: {_describe(e)}", kind=kind.value) from e


def record_to_model(kind: EntityKind, record: Mapping[str, Any]) -> JournalModel:
    """Typed view over a snapshot record (`{"id": ..., **fields}`)."""
    model = MODELS.get(kind)
    if model is None:
        raise ValidationFailure(f"{kind.value} has no typed model", kind=kind.value)
    try:
        return model.model_validate(dict(record))
    except ValidationError as e:
        raise ValidationFailure(f"invalid {kind.singular}: {_describe(e)}", kind=kind.value) from e
