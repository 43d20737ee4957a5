from datetime import datetime
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Set

from sqlalchemy import delete, insert, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from database.bidding_crud import to_dict
from database.models import (
    LevelingSnapshot,
    LevelingSnapshotItem,
    ProjectTradeBudget,
    TradeBid,
    TradeBidAlternate,
    TradeBidItem,
)

BASE_KIND = "base"


class LevelingCRUD:
    """
    Row-level access to the enhanced leveling tables.

    Nothing here commits: the leveling manager groups these calls into one
    transaction per operation.
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    # ----------------- trade bids -----------------
    async def list_trade_bids(self, project_id: str, trade_id: Optional[str] = None) -> List[Dict[str, Any]]:
        stmt = select(TradeBid).where(TradeBid.project_id == project_id).execution_options(populate_existing=True)
        if trade_id is not None:
            stmt = stmt.where(TradeBid.trade_id == trade_id)
        res = await self.session.execute(stmt)
        return [to_dict(b) for b in res.scalars().all()]

    async def find_trade_bid_id(self, project_id: str, trade_id: str, sub_id: str) -> Optional[str]:
        res = await self.session.execute(
            select(TradeBid.id).where(
                TradeBid.project_id == project_id,
                TradeBid.trade_id == trade_id,
                TradeBid.sub_id == sub_id,
            )
        )
        return res.scalar_one_or_none()

    async def upsert_trade_bid(
        self,
        project_id: str,
        trade_id: str,
        sub_id: str,
        *,
        status: str,
        base_bid_amount,
        notes: Optional[str],
        received_at: Optional[datetime],
    ) -> str:
        values = {
            "status": status,
            "base_bid_amount": base_bid_amount,
            "notes": notes,
            "received_at": received_at,
            "updated_at": datetime.utcnow(),
        }
        bid_id = await self.find_trade_bid_id(project_id, trade_id, sub_id)
        if bid_id:
            await self.session.execute(update(TradeBid).where(TradeBid.id == bid_id).values(**values))
            return bid_id

        bid = TradeBid(project_id=project_id, trade_id=trade_id, sub_id=sub_id, is_low=False, **values)
        self.session.add(bid)
        await self.session.flush()
        return bid.id

    async def set_low_flags(self, flags: Mapping[str, bool]) -> None:
        for bid_id, is_low in flags.items():
            await self.session.execute(update(TradeBid).where(TradeBid.id == bid_id).values(is_low=is_low))

    async def list_trade_bid_ids_for_links(self, project_id: str, trade_id: str, link_ids: Iterable[str]) -> List[str]:
        link_ids = list(link_ids)
        if not link_ids:
            return []
        res = await self.session.execute(
            select(TradeBid.id).where(
                TradeBid.project_id == project_id,
                TradeBid.trade_id == trade_id,
                TradeBid.sub_id.in_(link_ids),
            )
        )
        return list(res.scalars().all())

    async def delete_trade_bids(self, bid_ids: Iterable[str]) -> int:
        bid_ids = list(bid_ids)
        if not bid_ids:
            return 0
        result = await self.session.execute(delete(TradeBid).where(TradeBid.id.in_(bid_ids)))
        return int(result.rowcount or 0)

    async def delete_trade_bids_for_links(self, project_id: str, trade_id: str, link_ids: Iterable[str]) -> int:
        link_ids = list(link_ids)
        if not link_ids:
            return 0
        result = await self.session.execute(
            delete(TradeBid).where(
                TradeBid.project_id == project_id,
                TradeBid.trade_id == trade_id,
                TradeBid.sub_id.in_(link_ids),
            )
        )
        return int(result.rowcount or 0)

    # ----------------- items / alternates -----------------
    async def list_items(self, bid_id: str) -> List[Dict[str, Any]]:
        res = await self.session.execute(
            select(TradeBidItem)
            .where(TradeBidItem.bid_id == bid_id, TradeBidItem.kind == BASE_KIND)
            .order_by(TradeBidItem.sort_order.asc())
            .execution_options(populate_existing=True)
        )
        return [to_dict(i) for i in res.scalars().all()]

    async def list_alternates(self, bid_id: str) -> List[Dict[str, Any]]:
        res = await self.session.execute(
            select(TradeBidAlternate)
            .where(TradeBidAlternate.bid_id == bid_id)
            .order_by(TradeBidAlternate.sort_order.asc())
            .execution_options(populate_existing=True)
        )
        return [to_dict(a) for a in res.scalars().all()]

    async def list_item_ids(self, bid_id: str) -> List[str]:
        res = await self.session.execute(
            select(TradeBidItem.id).where(TradeBidItem.bid_id == bid_id, TradeBidItem.kind == BASE_KIND)
        )
        return list(res.scalars().all())

    async def list_alternate_ids(self, bid_id: str) -> List[str]:
        res = await self.session.execute(select(TradeBidAlternate.id).where(TradeBidAlternate.bid_id == bid_id))
        return list(res.scalars().all())

    async def delete_items(self, item_ids: Sequence[str]) -> int:
        if not item_ids:
            return 0
        result = await self.session.execute(delete(TradeBidItem).where(TradeBidItem.id.in_(list(item_ids))))
        return int(result.rowcount or 0)

    async def delete_alternates(self, alternate_ids: Sequence[str]) -> int:
        if not alternate_ids:
            return 0
        result = await self.session.execute(
            delete(TradeBidAlternate).where(TradeBidAlternate.id.in_(list(alternate_ids)))
        )
        return int(result.rowcount or 0)

    async def delete_items_for_bids(self, bid_ids: Sequence[str]) -> int:
        if not bid_ids:
            return 0
        result = await self.session.execute(delete(TradeBidItem).where(TradeBidItem.bid_id.in_(list(bid_ids))))
        return int(result.rowcount or 0)

    async def delete_alternates_for_bids(self, bid_ids: Sequence[str]) -> int:
        if not bid_ids:
            return 0
        result = await self.session.execute(
            delete(TradeBidAlternate).where(TradeBidAlternate.bid_id.in_(list(bid_ids)))
        )
        return int(result.rowcount or 0)

    async def _save_rows(self, model, rows: Sequence[Dict[str, Any]], existing_ids: Set[str]) -> None:
        new_rows = []
        for row in rows:
            if row["id"] in existing_ids:
                values = {k: v for k, v in row.items() if k != "id"}
                await self.session.execute(update(model).where(model.id == row["id"]).values(**values))
            else:
                new_rows.append(row)
        if new_rows:
            await self.session.execute(insert(model), new_rows)

    async def save_items(self, rows: Sequence[Dict[str, Any]], existing_ids: Set[str]) -> None:
        await self._save_rows(TradeBidItem, rows, existing_ids)

    async def save_alternates(self, rows: Sequence[Dict[str, Any]], existing_ids: Set[str]) -> None:
        await self._save_rows(TradeBidAlternate, rows, existing_ids)

    # ----------------- budgets -----------------
    async def list_budgets(self, project_id: str) -> List[Dict[str, Any]]:
        res = await self.session.execute(
            select(ProjectTradeBudget)
            .where(ProjectTradeBudget.project_id == project_id)
            .execution_options(populate_existing=True)
        )
        return [to_dict(b) for b in res.scalars().all()]

    async def upsert_budget(self, project_id: str, trade_id: str, budget_amount, budget_notes: Optional[str]) -> str:
        res = await self.session.execute(
            select(ProjectTradeBudget.id).where(
                ProjectTradeBudget.project_id == project_id,
                ProjectTradeBudget.trade_id == trade_id,
            )
        )
        budget_id = res.scalar_one_or_none()
        values = {"budget_amount": budget_amount, "budget_notes": budget_notes}
        if budget_id:
            await self.session.execute(
                update(ProjectTradeBudget).where(ProjectTradeBudget.id == budget_id).values(**values)
            )
            return budget_id
        budget = ProjectTradeBudget(project_id=project_id, trade_id=trade_id, **values)
        self.session.add(budget)
        await self.session.flush()
        return budget.id

    # ----------------- snapshots -----------------
    async def list_snapshots(self, project_id: str) -> List[Dict[str, Any]]:
        res = await self.session.execute(
            select(LevelingSnapshot)
            .where(LevelingSnapshot.project_id == project_id)
            .order_by(LevelingSnapshot.created_at.desc())
        )
        return [to_dict(s) for s in res.scalars().all()]

    async def insert_snapshot(self, project_id: str, created_by: Optional[str], title: str) -> str:
        snapshot = LevelingSnapshot(
            project_id=project_id,
            created_by=created_by,
            title=title,
            locked=True,
            created_at=datetime.utcnow(),
        )
        self.session.add(snapshot)
        await self.session.flush()
        return snapshot.id

    async def insert_snapshot_items(self, snapshot_id: str, entries: Sequence[Dict[str, Any]]) -> None:
        if not entries:
            return
        await self.session.execute(
            insert(LevelingSnapshotItem),
            [{**entry, "snapshot_id": snapshot_id} for entry in entries],
        )

    async def list_snapshot_items(self, snapshot_id: str) -> List[Dict[str, Any]]:
        res = await self.session.execute(
            select(LevelingSnapshotItem).where(LevelingSnapshotItem.snapshot_id == snapshot_id)
        )
        return [to_dict(i) for i in res.scalars().all()]
