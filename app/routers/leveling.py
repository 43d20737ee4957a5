from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field, field_validator
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.db import get_db
from app.logging_config import get_logger
from database.models import BidStatus
from managers.leveling_manager import LevelingManager
from managers.leveling_types import AlternateIn, BaseItemIn, SnapshotEntry
from managers.write_steps import LevelingWriteError, StepOutcome
from utils.money import require_money

log = get_logger("routers.leveling")

router = APIRouter(prefix="/leveling", tags=["leveling"])


class UpsertBidRequest(BaseModel):
    trade_id: str
    sub_id: str
    status: BidStatus
    legacy_bid_id: Optional[str] = None
    base_bid_amount: Optional[Decimal] = None
    notes: Optional[str] = None
    received_at: Optional[datetime] = None

    @field_validator("base_bid_amount", mode="before")
    @classmethod
    def _money(cls, v):
        return require_money(v)


class RemoveBidRequest(BaseModel):
    trade_id: str
    sub_id: str
    bid_id: Optional[str] = None
    alias_link_ids: List[str] = Field(default_factory=list)
    subcontractor_id: Optional[str] = None
    legacy_bid_id: Optional[str] = None


class BudgetRequest(BaseModel):
    budget_amount: Optional[Decimal] = None
    budget_notes: Optional[str] = None

    @field_validator("budget_amount", mode="before")
    @classmethod
    def _money(cls, v):
        return require_money(v)


class BreakdownRequest(BaseModel):
    base_items: List[BaseItemIn] = Field(default_factory=list)
    alternates: List[AlternateIn] = Field(default_factory=list)


class SnapshotRequest(BaseModel):
    title: str
    created_by: Optional[str] = None
    items: List[SnapshotEntry] = Field(default_factory=list)


class LockRoundRequest(BaseModel):
    title: str
    created_by: Optional[str] = None
    notes: Optional[str] = None


def _result(outcomes: List[StepOutcome]) -> dict:
    return {"ok": True, "skipped": [o.name for o in outcomes if o.skipped]}


def _raise_for(exc: Exception):
    if isinstance(exc, ValueError):
        raise HTTPException(status_code=422, detail=str(exc))
    if isinstance(exc, LevelingWriteError):
        code = 409 if isinstance(exc.cause, IntegrityError) else 500
        raise HTTPException(status_code=code, detail=f"{exc.operation} failed at {exc.step}")
    raise exc


@router.get("/projects/{project_id}")
async def get_leveling_view(project_id: str, db: AsyncSession = Depends(get_db)):
    view = await LevelingManager(db).build_view(project_id)
    if view is None:
        raise HTTPException(status_code=404, detail="Project not found")
    return {
        "project": view.project,
        "trades": view.trades,
        "project_subs": view.project_subs,
        "bids": list(view.bids.values()),
        "budgets": view.budgets,
        "snapshots": view.snapshots,
    }


@router.get("/projects/{project_id}/stats")
async def get_trade_stats(project_id: str, db: AsyncSession = Depends(get_db)):
    stats = await LevelingManager(db).trade_stats(project_id)
    if stats is None:
        raise HTTPException(status_code=404, detail="Project not found")
    return stats


@router.put("/projects/{project_id}/bids")
async def upsert_bid(project_id: str, payload: UpsertBidRequest, db: AsyncSession = Depends(get_db)):
    try:
        outcomes = await LevelingManager(db).upsert_bid(
            project_id,
            payload.trade_id,
            payload.sub_id,
            payload.status,
            base_bid_amount=payload.base_bid_amount,
            notes=payload.notes,
            received_at=payload.received_at,
            legacy_bid_id=payload.legacy_bid_id,
        )
    except (ValueError, LevelingWriteError) as exc:
        _raise_for(exc)
    return _result(outcomes)


@router.post("/projects/{project_id}/bids/remove")
async def remove_bid(project_id: str, payload: RemoveBidRequest, db: AsyncSession = Depends(get_db)):
    try:
        outcomes = await LevelingManager(db).remove_bid(
            project_id,
            payload.trade_id,
            payload.sub_id,
            bid_id=payload.bid_id,
            alias_link_ids=payload.alias_link_ids,
            subcontractor_id=payload.subcontractor_id,
            legacy_bid_id=payload.legacy_bid_id,
        )
    except LevelingWriteError as exc:
        _raise_for(exc)
    return _result(outcomes)


@router.put("/projects/{project_id}/budgets/{trade_id}")
async def upsert_budget(project_id: str, trade_id: str, payload: BudgetRequest, db: AsyncSession = Depends(get_db)):
    try:
        outcomes = await LevelingManager(db).upsert_budget(
            project_id, trade_id, payload.budget_amount, payload.budget_notes
        )
    except (ValueError, LevelingWriteError) as exc:
        _raise_for(exc)
    return _result(outcomes)


@router.get("/projects/{project_id}/breakdown/{trade_id}/{sub_id}")
async def get_breakdown(project_id: str, trade_id: str, sub_id: str, db: AsyncSession = Depends(get_db)):
    return await LevelingManager(db).get_breakdown(project_id, trade_id, sub_id)


@router.put("/projects/{project_id}/breakdown/{trade_id}/{sub_id}")
async def save_breakdown(
    project_id: str,
    trade_id: str,
    sub_id: str,
    payload: BreakdownRequest,
    db: AsyncSession = Depends(get_db),
):
    try:
        outcomes = await LevelingManager(db).save_breakdown(
            project_id, trade_id, sub_id, payload.base_items, payload.alternates
        )
    except (ValueError, LevelingWriteError) as exc:
        _raise_for(exc)
    return _result(outcomes)


@router.post("/projects/{project_id}/snapshots", status_code=201)
async def create_snapshot(project_id: str, payload: SnapshotRequest, db: AsyncSession = Depends(get_db)):
    try:
        snapshot_id = await LevelingManager(db).create_snapshot(
            project_id, payload.created_by, payload.title, payload.items
        )
    except (ValueError, LevelingWriteError) as exc:
        _raise_for(exc)
    return {"ok": True, "snapshot_id": snapshot_id}


@router.post("/projects/{project_id}/snapshots/lock", status_code=201)
async def lock_current_round(project_id: str, payload: LockRoundRequest, db: AsyncSession = Depends(get_db)):
    try:
        snapshot_id = await LevelingManager(db).snapshot_current_view(
            project_id, payload.created_by, payload.title, payload.notes
        )
    except (ValueError, LevelingWriteError) as exc:
        _raise_for(exc)
    if snapshot_id is None:
        raise HTTPException(status_code=404, detail="Project not found")
    log.info("Round locked for project %s as snapshot %s", project_id, snapshot_id)
    return {"ok": True, "snapshot_id": snapshot_id}


@router.get("/snapshots/{snapshot_id}/items")
async def get_snapshot_items(snapshot_id: str, db: AsyncSession = Depends(get_db)):
    return await LevelingManager(db).get_snapshot_items(snapshot_id)
