from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, Field, field_validator

from database.models import BidStatus, UnitType
from utils.money import require_money

BidKey = Tuple[str, str]  # (trade_id, sub_id)


class UnifiedBid(BaseModel):
    """One cell of the leveling grid. Never persisted."""
    id: str
    legacy_bid_id: Optional[str] = None
    project_id: str
    trade_id: str
    sub_id: str
    status: BidStatus
    base_bid_amount: Optional[Decimal] = None
    received_at: Optional[datetime] = None
    is_low: bool = False
    notes: Optional[str] = None

    @property
    def key(self) -> BidKey:
        return (self.trade_id, self.sub_id)


class LevelingView(BaseModel):
    project: Dict[str, Any]
    trades: List[Dict[str, Any]] = Field(default_factory=list)
    project_subs: List[Dict[str, Any]] = Field(default_factory=list)
    bids: Dict[BidKey, UnifiedBid] = Field(default_factory=dict)
    budgets: List[Dict[str, Any]] = Field(default_factory=list)
    snapshots: List[Dict[str, Any]] = Field(default_factory=list)

    def bid(self, trade_id: str, sub_id: str) -> Optional[UnifiedBid]:
        return self.bids.get((trade_id, sub_id))

    def bids_for_trade(self, trade_id: str) -> List[UnifiedBid]:
        return [b for (t, _), b in self.bids.items() if t == trade_id]

    def budget_for_trade(self, trade_id: str) -> Optional[Decimal]:
        for row in self.budgets:
            if row["trade_id"] == trade_id:
                return row.get("budget_amount")
        return None


class BaseItemIn(BaseModel):
    id: str
    description: str = ""
    qty: Optional[Decimal] = None
    unit: UnitType = UnitType.EA
    unit_price: Optional[Decimal] = None
    amount_override: Optional[Decimal] = None
    notes: Optional[str] = None
    sort_order: Optional[int] = None

    @field_validator("qty", "unit_price", "amount_override", mode="before")
    @classmethod
    def _money(cls, v):
        return require_money(v)

    @field_validator("description", mode="before")
    @classmethod
    def _strip(cls, v):
        return (v or "").strip()


class AlternateIn(BaseModel):
    id: str
    title: str = ""
    accepted: bool = False
    amount: Decimal = Decimal("0")
    notes: Optional[str] = None
    sort_order: Optional[int] = None

    @field_validator("amount", mode="before")
    @classmethod
    def _money(cls, v):
        parsed = require_money(v)
        return parsed if parsed is not None else Decimal("0")

    @field_validator("title", mode="before")
    @classmethod
    def _strip(cls, v):
        return (v or "").strip()


class Breakdown(BaseModel):
    bid_id: Optional[str] = None
    base_items: List[Dict[str, Any]] = Field(default_factory=list)
    alternates: List[Dict[str, Any]] = Field(default_factory=list)


class SnapshotEntry(BaseModel):
    trade_id: str
    sub_id: str
    base_bid_amount: Optional[Decimal] = None
    notes: Optional[str] = None
    included_json: Optional[Dict[str, Any]] = None
    line_items_json: Optional[Dict[str, Any]] = None

    @field_validator("base_bid_amount", mode="before")
    @classmethod
    def _money(cls, v):
        return require_money(v)


class TradeStats(BaseModel):
    low: Optional[Decimal] = None
    high: Optional[Decimal] = None
    spread_amount: Optional[Decimal] = None
    spread_percent: Optional[Decimal] = None
    average: Optional[Decimal] = None
    budget_delta_amount: Optional[Decimal] = None
    budget_delta_percent: Optional[Decimal] = None
    coverage_count: int = 0
