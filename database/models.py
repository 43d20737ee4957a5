# database/models.py
from datetime import datetime
from enum import Enum as PyEnum
import uuid

from sqlalchemy import (
    Boolean, Column, String, Text, Integer, ForeignKey, JSON, DateTime,
    UniqueConstraint, CheckConstraint, Numeric, Index, inspect)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from app.db import Base


def _new_id() -> str:
    return str(uuid.uuid4())


MONEY = Numeric(14, 2)


def _status_check(enum_cls, name: str) -> CheckConstraint:
    allowed = ", ".join(f"'{member.value}'" for member in enum_cls)
    return CheckConstraint(f"status IN ({allowed})", name=name)


class LegacyBidStatus(PyEnum):
    SUBMITTED = "submitted"
    BIDDING = "bidding"
    DECLINED = "declined"
    GHOSTED = "ghosted"
    INVITED = "invited"


class BidStatus(PyEnum):
    SUBMITTED = "submitted"
    BIDDING = "bidding"
    DECLINED = "declined"
    NO_RESPONSE = "no_response"
    INVITED = "invited"


class UnitType(PyEnum):
    LF = "LF"
    SF = "SF"
    SY = "SY"
    CY = "CY"
    EA = "EA"
    HR = "HR"
    DAY = "DAY"
    LS = "LS"
    ALLOW = "ALLOW"
    UNIT = "UNIT"
    OTHER = "OTHER"


# ---------- legacy bidding schema ------------------------------------------
class BidProject(Base):
    __tablename__ = "bid_projects"

    id = Column(String(36), primary_key=True, default=_new_id)
    project_name = Column(String, nullable=False)
    owner = Column(String, nullable=True)
    location = Column(String, nullable=True)
    budget = Column(MONEY, nullable=True)
    due_date = Column(DateTime, nullable=True)
    archived_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)

    trades = relationship("BidTrade", back_populates="project", passive_deletes=True)


class BidTrade(Base):
    __tablename__ = "bid_trades"

    id = Column(String(36), primary_key=True, default=_new_id)
    project_id = Column(String(36), ForeignKey("bid_projects.id", ondelete="CASCADE"), nullable=False, index=True)
    trade_name = Column(String, nullable=False)
    sort_order = Column(Integer, nullable=False, default=0)

    project = relationship("BidProject", back_populates="trades")


class BidSubcontractor(Base):
    __tablename__ = "bid_subcontractors"

    id = Column(String(36), primary_key=True, default=_new_id)
    company_name = Column(String, nullable=False)
    primary_contact = Column(String, nullable=True)
    email = Column(String, nullable=True)
    phone = Column(String, nullable=True)
    archived_at = Column(DateTime, nullable=True)


class BidProjectSub(Base):
    """An invitation of a subcontractor to a project. Re-invites add rows."""
    __tablename__ = "bid_project_subs"

    id = Column(String(36), primary_key=True, default=_new_id)
    project_id = Column(String(36), ForeignKey("bid_projects.id", ondelete="CASCADE"), nullable=False, index=True)
    subcontractor_id = Column(String(36), ForeignKey("bid_subcontractors.id"), nullable=False)
    sort_order = Column(Integer, nullable=False, default=0)
    invited_at = Column(DateTime, default=datetime.utcnow)

    subcontractor = relationship("BidSubcontractor", lazy="joined")


class BidTradeBid(Base):
    __tablename__ = "bid_trade_bids"

    id = Column(String(36), primary_key=True, default=_new_id)
    project_id = Column(String(36), ForeignKey("bid_projects.id", ondelete="CASCADE"), nullable=False)
    trade_id = Column(String(36), ForeignKey("bid_trades.id", ondelete="CASCADE"), nullable=False)
    project_sub_id = Column(String(36), ForeignKey("bid_project_subs.id", ondelete="CASCADE"), nullable=False)
    status = Column(String(20), nullable=False, default=LegacyBidStatus.INVITED.value)
    bid_amount = Column(MONEY, nullable=True)
    contact_name = Column(String, nullable=True)
    notes = Column(Text, nullable=True)

    __table_args__ = (
        Index("ix_bid_trade_bids_project_trade", "project_id", "trade_id"),
        _status_check(LegacyBidStatus, "ck_bid_trade_bids_status"),
    )


# ---------- enhanced leveling schema (provisioned gradually) ----------------
class TradeBid(Base):
    __tablename__ = "trade_bid"

    id = Column(String(36), primary_key=True, default=_new_id)
    project_id = Column(String(36), ForeignKey("bid_projects.id", ondelete="CASCADE"), nullable=False)
    trade_id = Column(String(36), ForeignKey("bid_trades.id", ondelete="CASCADE"), nullable=False)
    sub_id = Column(String(36), ForeignKey("bid_project_subs.id", ondelete="CASCADE"), nullable=False)
    status = Column(String(20), nullable=False, default=BidStatus.INVITED.value)
    base_bid_amount = Column(MONEY, nullable=True)
    received_at = Column(DateTime, nullable=True)
    is_low = Column(Boolean, nullable=False, default=False)
    notes = Column(Text, nullable=True)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        UniqueConstraint("project_id", "trade_id", "sub_id", name="uq_trade_bid_project_trade_sub"),
        _status_check(BidStatus, "ck_trade_bid_status"),
    )


class TradeBidItem(Base):
    __tablename__ = "trade_bid_items"

    id = Column(String(36), primary_key=True, default=_new_id)
    # no ON DELETE CASCADE: items go before their bid
    bid_id = Column(String(36), ForeignKey("trade_bid.id"), nullable=False, index=True)
    kind = Column(String(20), nullable=False, default="base")
    description = Column(Text, nullable=False, default="")
    qty = Column(Numeric(14, 4), nullable=True)
    unit = Column(String(10), nullable=False, default=UnitType.EA.value)
    unit_price = Column(MONEY, nullable=True)
    amount_override = Column(MONEY, nullable=True)
    notes = Column(Text, nullable=True)
    sort_order = Column(Integer, nullable=False, default=0)


class TradeBidAlternate(Base):
    __tablename__ = "trade_bid_alternates"

    id = Column(String(36), primary_key=True, default=_new_id)
    bid_id = Column(String(36), ForeignKey("trade_bid.id"), nullable=False, index=True)
    title = Column(Text, nullable=False, default="")
    accepted = Column(Boolean, nullable=False, default=False)
    amount = Column(MONEY, nullable=False, default=0)
    notes = Column(Text, nullable=True)
    sort_order = Column(Integer, nullable=False, default=0)


class ProjectTradeBudget(Base):
    __tablename__ = "project_trade_budget"

    id = Column(String(36), primary_key=True, default=_new_id)
    project_id = Column(String(36), ForeignKey("bid_projects.id", ondelete="CASCADE"), nullable=False)
    trade_id = Column(String(36), ForeignKey("bid_trades.id", ondelete="CASCADE"), nullable=False)
    budget_amount = Column(MONEY, nullable=True)
    budget_notes = Column(Text, nullable=True)

    __table_args__ = (
        UniqueConstraint("project_id", "trade_id", name="uq_project_trade_budget"),
    )


class LevelingSnapshot(Base):
    __tablename__ = "leveling_snapshot"

    id = Column(String(36), primary_key=True, default=_new_id)
    project_id = Column(String(36), ForeignKey("bid_projects.id", ondelete="CASCADE"), nullable=False, index=True)
    created_by = Column(String, nullable=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow, server_default=func.now())
    title = Column(String, nullable=False)
    locked = Column(Boolean, nullable=False, default=True)

    items = relationship("LevelingSnapshotItem", back_populates="snapshot", passive_deletes=True)


class LevelingSnapshotItem(Base):
    __tablename__ = "leveling_snapshot_items"

    id = Column(String(36), primary_key=True, default=_new_id)
    snapshot_id = Column(String(36), ForeignKey("leveling_snapshot.id", ondelete="CASCADE"), nullable=False, index=True)
    # copied values, not FKs: the archive outlives trade/link edits
    trade_id = Column(String(36), nullable=False)
    sub_id = Column(String(36), nullable=False)
    base_bid_amount = Column(MONEY, nullable=True)
    notes = Column(Text, nullable=True)
    included_json = Column(JSON, nullable=True)
    line_items_json = Column(JSON, nullable=True)

    snapshot = relationship("LevelingSnapshot", back_populates="items")


LEGACY_TABLES = (
    BidProject.__table__,
    BidTrade.__table__,
    BidSubcontractor.__table__,
    BidProjectSub.__table__,
    BidTradeBid.__table__,
)

ENHANCED_TABLES = (
    TradeBid.__table__,
    TradeBidItem.__table__,
    TradeBidAlternate.__table__,
    ProjectTradeBudget.__table__,
    LevelingSnapshot.__table__,
    LevelingSnapshotItem.__table__,
)


def missing_enhanced_tables(sync_conn) -> list:
    """Names of enhanced leveling tables not yet provisioned on this connection."""
    present = set(inspect(sync_conn).get_table_names())
    return [t.name for t in ENHANCED_TABLES if t.name not in present]
