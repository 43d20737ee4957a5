from __future__ import annotations

from typing import Union

from database.models import BidStatus, LegacyBidStatus

# Only ghosted/no_response differ between the two vocabularies.
_LEGACY_TO_ENHANCED = {
    LegacyBidStatus.SUBMITTED: BidStatus.SUBMITTED,
    LegacyBidStatus.BIDDING: BidStatus.BIDDING,
    LegacyBidStatus.DECLINED: BidStatus.DECLINED,
    LegacyBidStatus.GHOSTED: BidStatus.NO_RESPONSE,
    LegacyBidStatus.INVITED: BidStatus.INVITED,
}
_ENHANCED_TO_LEGACY = {v: k for k, v in _LEGACY_TO_ENHANCED.items()}


def coerce_status(value: Union[str, BidStatus]) -> BidStatus:
    """Parse an enhanced status. Unknown values raise ``ValueError``."""
    if isinstance(value, BidStatus):
        return value
    return BidStatus(value)


def coerce_legacy_status(value: Union[str, LegacyBidStatus]) -> LegacyBidStatus:
    if isinstance(value, LegacyBidStatus):
        return value
    return LegacyBidStatus(value)


def to_enhanced(status: Union[str, LegacyBidStatus]) -> BidStatus:
    return _LEGACY_TO_ENHANCED[coerce_legacy_status(status)]


def to_legacy(status: Union[str, BidStatus]) -> LegacyBidStatus:
    return _ENHANCED_TO_LEGACY[coerce_status(status)]
