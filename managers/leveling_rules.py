"""
Pure leveling rules. Nothing in here touches the database, so the
precedence and low-bid decisions can be checked in isolation.
"""
from __future__ import annotations

from decimal import Decimal
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence

from app.logging_config import get_logger
from database.models import BidStatus, LegacyBidStatus, UnitType
from managers.bid_status import coerce_status, to_enhanced
from managers.leveling_types import BidKey, TradeStats, UnifiedBid

log = get_logger("leveling_rules")

LUMP_UNITS = {UnitType.LS, UnitType.ALLOW}
_HUNDRED = Decimal("100")
_LEGACY_VALUES = {s.value for s in LegacyBidStatus}


def stored_status(value: Any) -> Optional[BidStatus]:
    """Enhanced status of a stored row, or None for a value outside the vocabulary."""
    try:
        return coerce_status(value)
    except ValueError:
        return None


def unify_legacy_bid(row: Mapping[str, Any]) -> UnifiedBid:
    return UnifiedBid(
        id=row["id"],
        legacy_bid_id=row["id"],
        project_id=row["project_id"],
        trade_id=row["trade_id"],
        sub_id=row["project_sub_id"],
        status=to_enhanced(row["status"]),
        base_bid_amount=row.get("bid_amount"),
        received_at=None,
        is_low=False,
        notes=row.get("notes"),
    )


def merge_bids(
    legacy_rows: Iterable[Mapping[str, Any]],
    enhanced_rows: Iterable[Mapping[str, Any]],
) -> Dict[BidKey, UnifiedBid]:
    """
    Overlay enhanced bids on legacy bids keyed by (trade_id, sub_id).

    The enhanced row wins on every field; the legacy id is kept as a
    back-reference so compatibility writes can still target it.

    Rows whose stored status is outside the vocabulary are left out (the
    legacy bid stays visible when only the enhanced row is bad).
    """
    merged: Dict[BidKey, UnifiedBid] = {}
    for row in legacy_rows:
        if row["status"] not in _LEGACY_VALUES:
            log.warning("Skipping legacy bid %s with unknown status %r", row["id"], row["status"])
            continue
        bid = unify_legacy_bid(row)
        merged[bid.key] = bid

    for row in enhanced_rows:
        status = stored_status(row["status"])
        if status is None:
            log.warning("Skipping trade_bid %s with unknown status %r", row["id"], row["status"])
            continue
        key = (row["trade_id"], row["sub_id"])
        existing = merged.get(key)
        merged[key] = UnifiedBid(
            id=row["id"],
            legacy_bid_id=existing.legacy_bid_id if existing else None,
            project_id=row["project_id"],
            trade_id=row["trade_id"],
            sub_id=row["sub_id"],
            status=status,
            base_bid_amount=row.get("base_bid_amount"),
            received_at=row.get("received_at"),
            is_low=bool(row.get("is_low") or False),
            notes=row.get("notes"),
        )
    return merged


def _is_submitted(row: Mapping[str, Any]) -> bool:
    return stored_status(row["status"]) is BidStatus.SUBMITTED


def low_amount(rows: Iterable[Mapping[str, Any]]) -> Optional[Decimal]:
    amounts = [
        row["base_bid_amount"]
        for row in rows
        if _is_submitted(row) and row.get("base_bid_amount") is not None
    ]
    return min(amounts) if amounts else None


def compute_low_flags(rows: Sequence[Mapping[str, Any]]) -> Dict[str, bool]:
    """
    Map bid id -> is_low for every bid in one trade.

    Ties keep every bid at the minimum. Equality is exact.
    """
    low = low_amount(rows)
    flags: Dict[str, bool] = {}
    for row in rows:
        amount = row.get("base_bid_amount")
        flags[row["id"]] = (
            low is not None
            and _is_submitted(row)
            and amount is not None
            and amount == low
        )
    return flags


def removed_ids(persisted: Iterable[str], incoming: Iterable[str]) -> List[str]:
    keep = set(incoming)
    return [row_id for row_id in persisted if row_id not in keep]


def line_total(item: Mapping[str, Any]) -> Decimal:
    unit = item.get("unit") or UnitType.EA.value
    unit = unit if isinstance(unit, UnitType) else UnitType(unit)
    unit_price = item.get("unit_price")
    if unit in LUMP_UNITS:
        override = item.get("amount_override")
        if override is not None:
            return Decimal(override)
        return Decimal(unit_price) if unit_price is not None else Decimal("0")
    qty = item.get("qty")
    if qty is None or unit_price is None:
        return Decimal("0")
    return Decimal(qty) * Decimal(unit_price)


def compute_trade_stats(bids: Iterable[UnifiedBid], budget_amount: Optional[Decimal]) -> TradeStats:
    values = [
        b.base_bid_amount
        for b in bids
        if b.status is BidStatus.SUBMITTED and b.base_bid_amount is not None
    ]
    if not values:
        return TradeStats()

    low = min(values)
    high = max(values)
    spread = high - low
    stats = TradeStats(
        low=low,
        high=high,
        spread_amount=spread,
        spread_percent=(spread / low * _HUNDRED) if low > 0 else None,
        average=sum(values, Decimal("0")) / len(values),
        coverage_count=len(values),
    )
    if budget_amount is not None:
        stats.budget_delta_amount = low - budget_amount
        if budget_amount > 0:
            stats.budget_delta_percent = stats.budget_delta_amount / budget_amount * _HUNDRED
    return stats
