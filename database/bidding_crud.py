from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from database.models import (
    BidProject,
    BidProjectSub,
    BidSubcontractor,
    BidTrade,
    BidTradeBid,
    LegacyBidStatus,
)


def to_dict(model) -> Dict[str, Any]:
    return {c.key: getattr(model, c.key) for c in model.__table__.columns}


class BiddingCRUD:
    """
    Legacy bidding tables. Project setup helpers commit on their own; the
    row primitives used by the leveling engine leave commit to the caller.
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    async def _add(self, obj):
        self.session.add(obj)
        await self.session.commit()
        await self.session.refresh(obj)
        return to_dict(obj)

    # ----------------- project setup -----------------
    async def create_project(self, project_name: str, **fields) -> Dict[str, Any]:
        return await self._add(BidProject(project_name=project_name.strip(), **fields))

    async def create_trade(self, project_id: str, trade_name: str, sort_order: int = 0) -> Dict[str, Any]:
        return await self._add(BidTrade(project_id=project_id, trade_name=trade_name.strip(), sort_order=sort_order))

    async def create_subcontractor(self, company_name: str, **fields) -> Dict[str, Any]:
        return await self._add(BidSubcontractor(company_name=company_name.strip(), **fields))

    async def invite_sub(
        self,
        project_id: str,
        subcontractor_id: str,
        sort_order: int = 0,
        invited_at: Optional[datetime] = None,
    ) -> Dict[str, Any]:
        return await self._add(
            BidProjectSub(
                project_id=project_id,
                subcontractor_id=subcontractor_id,
                sort_order=sort_order,
                invited_at=invited_at or datetime.utcnow(),
            )
        )

    async def create_legacy_bid(
        self,
        project_id: str,
        trade_id: str,
        project_sub_id: str,
        status: str = LegacyBidStatus.INVITED.value,
        bid_amount=None,
        contact_name: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> Dict[str, Any]:
        return await self._add(
            BidTradeBid(
                project_id=project_id,
                trade_id=trade_id,
                project_sub_id=project_sub_id,
                status=LegacyBidStatus(status).value,
                bid_amount=bid_amount,
                contact_name=contact_name,
                notes=notes,
            )
        )

    # ----------------- reads -----------------
    async def get_project(self, project_id: str) -> Optional[Dict[str, Any]]:
        res = await self.session.execute(select(BidProject).where(BidProject.id == project_id))
        project = res.scalar_one_or_none()
        return to_dict(project) if project else None

    async def list_trades(self, project_id: str) -> List[Dict[str, Any]]:
        res = await self.session.execute(
            select(BidTrade)
            .where(BidTrade.project_id == project_id)
            .order_by(BidTrade.sort_order.asc(), BidTrade.trade_name.asc())
        )
        return [to_dict(t) for t in res.scalars().all()]

    async def list_project_subs(self, project_id: str) -> List[Dict[str, Any]]:
        res = await self.session.execute(
            select(BidProjectSub)
            .where(BidProjectSub.project_id == project_id)
            .order_by(BidProjectSub.sort_order.asc(), BidProjectSub.invited_at.asc())
        )
        out: List[Dict[str, Any]] = []
        for link in res.scalars().all():
            row = to_dict(link)
            row["subcontractor"] = to_dict(link.subcontractor) if link.subcontractor else None
            out.append(row)
        return out

    async def list_legacy_bids(self, project_id: str) -> List[Dict[str, Any]]:
        res = await self.session.execute(
            select(BidTradeBid)
            .where(BidTradeBid.project_id == project_id)
            .execution_options(populate_existing=True)
        )
        return [to_dict(b) for b in res.scalars().all()]

    async def list_link_ids_for_subcontractor(self, project_id: str, subcontractor_id: str) -> List[str]:
        res = await self.session.execute(
            select(BidProjectSub.id).where(
                BidProjectSub.project_id == project_id,
                BidProjectSub.subcontractor_id == subcontractor_id,
            )
        )
        return [str(row_id) for row_id in res.scalars().all() if row_id]

    # ----------------- engine writes (no commit) -----------------
    async def update_legacy_bid(self, bid_id: str, values: Dict[str, Any]) -> int:
        result = await self.session.execute(
            update(BidTradeBid).where(BidTradeBid.id == bid_id).values(**values)
        )
        return int(result.rowcount or 0)

    async def insert_legacy_bid(self, values: Dict[str, Any]) -> str:
        bid = BidTradeBid(**values)
        self.session.add(bid)
        await self.session.flush()
        return bid.id

    async def delete_legacy_bid(self, bid_id: str) -> int:
        result = await self.session.execute(delete(BidTradeBid).where(BidTradeBid.id == bid_id))
        return int(result.rowcount or 0)

    async def delete_legacy_bids_for_links(self, project_id: str, trade_id: str, link_ids: Iterable[str]) -> int:
        link_ids = list(link_ids)
        if not link_ids:
            return 0
        result = await self.session.execute(
            delete(BidTradeBid).where(
                BidTradeBid.project_id == project_id,
                BidTradeBid.trade_id == trade_id,
                BidTradeBid.project_sub_id.in_(link_ids),
            )
        )
        return int(result.rowcount or 0)
