from decimal import Decimal

import pytest

from database.models import BidStatus, LegacyBidStatus, UnitType
from managers.bid_status import coerce_status, to_enhanced, to_legacy
from managers.leveling_rules import (
    compute_low_flags,
    compute_trade_stats,
    line_total,
    merge_bids,
    removed_ids,
)
from managers.leveling_types import UnifiedBid
from utils.money import parse_money, require_money


def _row(bid_id, amount, status="submitted"):
    return {"id": bid_id, "status": status, "base_bid_amount": None if amount is None else Decimal(amount)}


def _bid(bid_id, amount, status=BidStatus.SUBMITTED):
    return UnifiedBid(
        id=bid_id,
        project_id="p1",
        trade_id="t1",
        sub_id=bid_id,
        status=status,
        base_bid_amount=None if amount is None else Decimal(amount),
    )


# ---------------------------------------------------------------- statuses
def test_ghosted_maps_to_no_response_both_ways():
    assert to_enhanced("ghosted") is BidStatus.NO_RESPONSE
    assert to_legacy(BidStatus.NO_RESPONSE) is LegacyBidStatus.GHOSTED
    assert to_legacy("no_response") is LegacyBidStatus.GHOSTED


@pytest.mark.parametrize("value", ["submitted", "bidding", "declined", "invited"])
def test_shared_statuses_map_unchanged(value):
    assert to_enhanced(value).value == value
    assert to_legacy(value).value == value


@pytest.mark.parametrize("legacy", list(LegacyBidStatus))
def test_legacy_status_round_trips(legacy):
    assert to_legacy(to_enhanced(legacy)) is legacy


def test_unknown_status_is_rejected():
    with pytest.raises(ValueError):
        coerce_status("awarded")
    with pytest.raises(ValueError):
        to_enhanced("no_response")


# --------------------------------------------------------------- low flags
def test_low_flags_keep_ties():
    flags = compute_low_flags([_row("a", "100"), _row("b", "90"), _row("c", "90")])
    assert flags == {"a": False, "b": True, "c": True}


def test_low_flags_ignore_unsubmitted_and_missing_amounts():
    flags = compute_low_flags(
        [
            _row("a", "50", status="bidding"),
            _row("b", None),
            _row("c", "120"),
            _row("d", "10", status="declined"),
        ]
    )
    assert flags == {"a": False, "b": False, "c": True, "d": False}


def test_low_flags_all_false_without_submitted_amounts():
    flags = compute_low_flags([_row("a", "50", status="invited"), _row("b", None)])
    assert flags == {"a": False, "b": False}


def test_low_flags_use_exact_equality():
    flags = compute_low_flags([_row("a", "90.00"), _row("b", "90.01")])
    assert flags == {"a": True, "b": False}


# ------------------------------------------------------------------- merge
def test_enhanced_bid_overrides_legacy_and_keeps_back_reference():
    legacy = [
        {
            "id": "legacy-1",
            "project_id": "p1",
            "trade_id": "t1",
            "project_sub_id": "s1",
            "status": "ghosted",
            "bid_amount": Decimal("80"),
            "notes": "old",
        },
        {
            "id": "legacy-2",
            "project_id": "p1",
            "trade_id": "t1",
            "project_sub_id": "s2",
            "status": "bidding",
            "bid_amount": None,
            "notes": None,
        },
    ]
    enhanced = [
        {
            "id": "tb-1",
            "project_id": "p1",
            "trade_id": "t1",
            "sub_id": "s1",
            "status": "submitted",
            "base_bid_amount": Decimal("75"),
            "received_at": None,
            "is_low": True,
            "notes": "revised",
        }
    ]

    merged = merge_bids(legacy, enhanced)

    assert set(merged) == {("t1", "s1"), ("t1", "s2")}
    s1 = merged[("t1", "s1")]
    assert s1.id == "tb-1"
    assert s1.legacy_bid_id == "legacy-1"
    assert s1.status is BidStatus.SUBMITTED
    assert s1.base_bid_amount == Decimal("75")
    assert s1.notes == "revised"
    assert s1.is_low is True

    s2 = merged[("t1", "s2")]
    assert s2.id == "legacy-2"
    assert s2.legacy_bid_id == "legacy-2"
    assert s2.is_low is False


def test_legacy_ghosted_bid_reads_as_no_response():
    merged = merge_bids(
        [
            {
                "id": "l1",
                "project_id": "p1",
                "trade_id": "t1",
                "project_sub_id": "s1",
                "status": "ghosted",
                "bid_amount": None,
                "notes": None,
            }
        ],
        [],
    )
    assert merged[("t1", "s1")].status is BidStatus.NO_RESPONSE


def test_enhanced_bid_without_legacy_row():
    merged = merge_bids(
        [],
        [
            {
                "id": "tb-9",
                "project_id": "p1",
                "trade_id": "t2",
                "sub_id": "s9",
                "status": "invited",
                "base_bid_amount": None,
                "is_low": None,
            }
        ],
    )
    bid = merged[("t2", "s9")]
    assert bid.legacy_bid_id is None
    assert bid.is_low is False


# ------------------------------------------------------------- diff / totals
def test_removed_ids_keeps_persisted_order():
    assert removed_ids(["a", "b", "c", "d"], ["c", "a", "new"]) == ["b", "d"]
    assert removed_ids([], ["x"]) == []


def test_line_total_by_unit():
    assert line_total({"unit": "EA", "qty": Decimal("3"), "unit_price": Decimal("12.50")}) == Decimal("37.50")
    assert line_total({"unit": "LF", "qty": None, "unit_price": Decimal("4")}) == Decimal("0")
    assert line_total({"unit": "LS", "unit_price": Decimal("900"), "amount_override": Decimal("750")}) == Decimal("750")
    assert line_total({"unit": UnitType.ALLOW, "unit_price": Decimal("500")}) == Decimal("500")
    assert line_total({"unit": "LS"}) == Decimal("0")


# ------------------------------------------------------------------- stats
def test_trade_stats_against_budget():
    stats = compute_trade_stats(
        [_bid("a", "100"), _bid("b", "80"), _bid("c", "120"), _bid("d", "10", status=BidStatus.BIDDING)],
        Decimal("100"),
    )
    assert stats.low == Decimal("80")
    assert stats.high == Decimal("120")
    assert stats.spread_amount == Decimal("40")
    assert stats.spread_percent == Decimal("50")
    assert stats.average == Decimal("100")
    assert stats.coverage_count == 3
    assert stats.budget_delta_amount == Decimal("-20")
    assert stats.budget_delta_percent == Decimal("-20")


def test_trade_stats_empty_without_submitted_bids():
    stats = compute_trade_stats([_bid("a", None), _bid("b", "50", status=BidStatus.INVITED)], Decimal("10"))
    assert stats.low is None
    assert stats.coverage_count == 0
    assert stats.budget_delta_amount is None


# ------------------------------------------------------------------- money
@pytest.mark.parametrize(
    "raw, expected",
    [
        ("$1,250.00", Decimal("1250.00")),
        (" 99 ", Decimal("99")),
        (42, Decimal("42")),
        (Decimal("3.10"), Decimal("3.10")),
        ("", None),
        ("abc", None),
        (None, None),
        (True, None),
        ("NaN", None),
        (float("inf"), None),
    ],
)
def test_parse_money(raw, expected):
    assert parse_money(raw) == expected


@pytest.mark.parametrize("raw, expected", [(None, None), ("", None), ("  ", None), ("$2,000", Decimal("2000")), (7, Decimal("7"))])
def test_require_money_accepts_numbers_and_blanks(raw, expected):
    assert require_money(raw) == expected


@pytest.mark.parametrize("raw", ["1OO", "n/a", True, "Infinity", float("nan")])
def test_require_money_rejects_malformed_input(raw):
    with pytest.raises(ValueError):
        require_money(raw)


# --------------------------------------------------- unrecognised statuses
def test_unrecognised_stored_status_is_never_low():
    flags = compute_low_flags([_row("a", "50", status="awarded"), _row("b", "90")])
    assert flags == {"a": False, "b": True}


def test_merge_skips_rows_with_unrecognised_status():
    legacy = [
        {"id": "l1", "project_id": "p1", "trade_id": "t1", "project_sub_id": "s1",
         "status": "bidding", "bid_amount": None, "notes": None},
        {"id": "l2", "project_id": "p1", "trade_id": "t1", "project_sub_id": "s2",
         "status": "won", "bid_amount": Decimal("5"), "notes": None},
    ]
    enhanced = [
        {"id": "tb-1", "project_id": "p1", "trade_id": "t1", "sub_id": "s1",
         "status": "awarded", "base_bid_amount": Decimal("70"), "is_low": True},
    ]

    merged = merge_bids(legacy, enhanced)

    assert set(merged) == {("t1", "s1")}
    assert merged[("t1", "s1")].id == "l1"
    assert merged[("t1", "s1")].status is BidStatus.BIDDING
