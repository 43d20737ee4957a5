from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional, Sequence, Union

from pydantic_core import to_jsonable_python
from sqlalchemy.ext.asyncio import AsyncSession

from app.logging_config import get_logger
from database.bidding_crud import BiddingCRUD
from database.leveling_crud import BASE_KIND, LevelingCRUD
from database.models import BidStatus
from managers.bid_status import coerce_status, to_legacy
from managers.leveling_rules import (
    compute_low_flags,
    compute_trade_stats,
    line_total,
    merge_bids,
    removed_ids,
)
from managers.leveling_types import (
    AlternateIn,
    BaseItemIn,
    Breakdown,
    LevelingView,
    SnapshotEntry,
    TradeStats,
)
from managers.write_steps import (
    StepOutcome,
    StepPolicy,
    WriteStep,
    read_optional,
    run_steps,
)
from utils.money import require_money

log = get_logger("leveling_manager")


def _unique(values: Iterable[Optional[str]]) -> List[str]:
    seen: List[str] = []
    for value in values:
        if value and value.strip() and value not in seen:
            seen.append(value)
    return seen


@dataclass
class _RemovalPlan:
    sub_id: str
    aliases: List[str]
    bid_ids: List[str] = field(default_factory=list)

    @property
    def link_ids(self) -> List[str]:
        return _unique([self.sub_id, *self.aliases])


@dataclass
class _BreakdownPlan:
    bid_id: Optional[str] = None
    item_ids: List[str] = field(default_factory=list)
    alternate_ids: List[str] = field(default_factory=list)


class LevelingManager:
    """
    Bid leveling engine: merged legacy/enhanced view, dual writes,
    low-bid flags, cascading removal, breakdown diffs and snapshots.
    """

    def __init__(self, session: AsyncSession):
        self.session = session
        self.bidding = BiddingCRUD(session)
        self.leveling = LevelingCRUD(session)

    # ------------------------------------------------------------------ view
    async def build_view(self, project_id: str) -> Optional[LevelingView]:
        if not project_id:
            return None
        project = await self.bidding.get_project(project_id)
        if not project:
            return None

        trades = await self.bidding.list_trades(project_id)
        project_subs = await self.bidding.list_project_subs(project_id)
        legacy_bids = await self.bidding.list_legacy_bids(project_id)

        enhanced_bids = await read_optional(
            self.session, lambda: self.leveling.list_trade_bids(project_id), [], what="trade_bid"
        )
        budgets = await read_optional(
            self.session, lambda: self.leveling.list_budgets(project_id), [], what="project_trade_budget"
        )
        snapshots = await read_optional(
            self.session, lambda: self.leveling.list_snapshots(project_id), [], what="leveling_snapshot"
        )

        return LevelingView(
            project=project,
            trades=trades,
            project_subs=project_subs,
            bids=merge_bids(legacy_bids, enhanced_bids),
            budgets=budgets,
            snapshots=snapshots,
        )

    async def trade_stats(self, project_id: str) -> Optional[Dict[str, TradeStats]]:
        view = await self.build_view(project_id)
        if view is None:
            return None
        return {
            trade["id"]: compute_trade_stats(view.bids_for_trade(trade["id"]), view.budget_for_trade(trade["id"]))
            for trade in view.trades
        }

    # -------------------------------------------------------------- low bids
    async def _apply_low_flags(self, project_id: str, trade_id: str) -> None:
        rows = await self.leveling.list_trade_bids(project_id, trade_id)
        flags = compute_low_flags(rows)
        changed = {row["id"]: flags[row["id"]] for row in rows if bool(row.get("is_low")) != flags[row["id"]]}
        await self.leveling.set_low_flags(changed)

    def _recalc_step(self, project_id: str, trade_id: str) -> WriteStep:
        return WriteStep(
            "recalc_low_flags",
            lambda: self._apply_low_flags(project_id, trade_id),
            StepPolicy.BEST_EFFORT,
        )

    async def recalc_low_flags(self, project_id: str, trade_id: str) -> List[StepOutcome]:
        return await run_steps(self.session, [self._recalc_step(project_id, trade_id)], operation="recalc_low_flags")

    # ------------------------------------------------------------ bid writer
    async def upsert_bid(
        self,
        project_id: str,
        trade_id: str,
        sub_id: str,
        status: Union[str, BidStatus],
        base_bid_amount: Optional[Decimal] = None,
        notes: Optional[str] = None,
        received_at: Optional[datetime] = None,
        legacy_bid_id: Optional[str] = None,
    ) -> List[StepOutcome]:
        status = coerce_status(status)
        base_bid_amount = require_money(base_bid_amount)
        legacy_values = {
            "status": to_legacy(status).value,
            "bid_amount": base_bid_amount,
            "notes": notes,
        }

        async def write_enhanced():
            await self.leveling.upsert_trade_bid(
                project_id,
                trade_id,
                sub_id,
                status=status.value,
                base_bid_amount=base_bid_amount,
                notes=notes,
                received_at=received_at,
            )

        async def write_legacy():
            if legacy_bid_id:
                updated = await self.bidding.update_legacy_bid(legacy_bid_id, legacy_values)
                if not updated:
                    log.warning("Legacy bid %s not found; nothing mirrored", legacy_bid_id)
                return
            await self.bidding.insert_legacy_bid(
                {"project_id": project_id, "trade_id": trade_id, "project_sub_id": sub_id, **legacy_values}
            )

        steps = [
            WriteStep("upsert_trade_bid", write_enhanced, StepPolicy.OPTIONAL_SCHEMA),
            WriteStep("write_legacy_bid", write_legacy, StepPolicy.MANDATORY),
            self._recalc_step(project_id, trade_id),
        ]
        return await run_steps(self.session, steps, operation="upsert_bid")

    # ----------------------------------------------------------- bid remover
    async def remove_bid(
        self,
        project_id: str,
        trade_id: str,
        sub_id: str,
        bid_id: Optional[str] = None,
        alias_link_ids: Optional[Sequence[str]] = None,
        subcontractor_id: Optional[str] = None,
        legacy_bid_id: Optional[str] = None,
    ) -> List[StepOutcome]:
        """
        Delete a subcontractor's bid in one trade from both schemas.

        All links of the same subcontractor are treated as one bidding
        identity. Items and alternates are deleted before their bids.
        """
        plan = _RemovalPlan(sub_id=sub_id, aliases=_unique(alias_link_ids or []))
        if bid_id:
            plan.bid_ids.append(bid_id)

        async def resolve_aliases():
            plan.aliases = _unique(await self.bidding.list_link_ids_for_subcontractor(project_id, subcontractor_id))

        async def resolve_bid_ids():
            found = await self.leveling.list_trade_bid_ids_for_links(project_id, trade_id, plan.link_ids)
            plan.bid_ids = _unique([*plan.bid_ids, *found])

        async def delete_items():
            await self.leveling.delete_items_for_bids(plan.bid_ids)

        async def delete_alternates():
            await self.leveling.delete_alternates_for_bids(plan.bid_ids)

        async def delete_trade_bids():
            await self.leveling.delete_trade_bids(plan.bid_ids)
            await self.leveling.delete_trade_bids_for_links(project_id, trade_id, plan.link_ids)

        async def delete_legacy_by_id():
            await self.bidding.delete_legacy_bid(legacy_bid_id)

        async def delete_legacy_by_link():
            await self.bidding.delete_legacy_bids_for_links(project_id, trade_id, plan.link_ids)

        steps: List[WriteStep] = []
        if not plan.aliases and subcontractor_id:
            steps.append(WriteStep("resolve_alias_links", resolve_aliases, StepPolicy.MANDATORY))
        steps += [
            WriteStep("resolve_trade_bid_ids", resolve_bid_ids, StepPolicy.OPTIONAL_SCHEMA),
            WriteStep("delete_trade_bid_items", delete_items, StepPolicy.OPTIONAL_SCHEMA),
            WriteStep("delete_trade_bid_alternates", delete_alternates, StepPolicy.OPTIONAL_SCHEMA),
            WriteStep("delete_trade_bids", delete_trade_bids, StepPolicy.OPTIONAL_SCHEMA),
        ]
        if legacy_bid_id:
            steps.append(WriteStep("delete_legacy_bid_by_id", delete_legacy_by_id, StepPolicy.MANDATORY))
        steps += [
            WriteStep("delete_legacy_bids_by_link", delete_legacy_by_link, StepPolicy.MANDATORY),
            self._recalc_step(project_id, trade_id),
        ]
        return await run_steps(self.session, steps, operation="remove_bid")

    # ---------------------------------------------------------------- budget
    async def upsert_budget(
        self,
        project_id: str,
        trade_id: str,
        budget_amount: Optional[Decimal] = None,
        budget_notes: Optional[str] = None,
    ) -> List[StepOutcome]:
        budget_amount = require_money(budget_amount)
        step = WriteStep(
            "upsert_budget",
            lambda: self.leveling.upsert_budget(project_id, trade_id, budget_amount, budget_notes),
        )
        return await run_steps(self.session, [step], operation="upsert_budget")

    # ------------------------------------------------------------- breakdown
    async def get_breakdown(self, project_id: str, trade_id: str, sub_id: str) -> Breakdown:
        bid_id = await read_optional(
            self.session,
            lambda: self.leveling.find_trade_bid_id(project_id, trade_id, sub_id),
            None,
            what="trade_bid",
        )
        if not bid_id:
            return Breakdown()
        items = await read_optional(self.session, lambda: self.leveling.list_items(bid_id), [], what="trade_bid_items")
        alternates = await read_optional(
            self.session, lambda: self.leveling.list_alternates(bid_id), [], what="trade_bid_alternates"
        )
        return Breakdown(bid_id=bid_id, base_items=items, alternates=alternates)

    async def save_breakdown(
        self,
        project_id: str,
        trade_id: str,
        sub_id: str,
        base_items: Sequence[Union[BaseItemIn, Dict[str, Any]]],
        alternates: Sequence[Union[AlternateIn, Dict[str, Any]]],
    ) -> List[StepOutcome]:
        """
        Make the persisted items and alternates of one bid equal the given
        lists. Rows keep their ids; only ids missing from the lists are
        deleted. Without a bid for (trade, sub) this is a no-op.
        """
        items = [i if isinstance(i, BaseItemIn) else BaseItemIn.model_validate(i) for i in base_items]
        alts = [a if isinstance(a, AlternateIn) else AlternateIn.model_validate(a) for a in alternates]
        for label, rows in (("base item", items), ("alternate", alts)):
            ids = [row.id for row in rows]
            if len(ids) != len(set(ids)):
                raise ValueError(f"duplicate {label} ids in breakdown")

        plan = _BreakdownPlan()

        async def resolve_bid():
            plan.bid_id = await self.leveling.find_trade_bid_id(project_id, trade_id, sub_id)
            if not plan.bid_id:
                log.info("No trade_bid for %s/%s; breakdown not saved", trade_id, sub_id)

        async def load_existing():
            if plan.bid_id:
                plan.item_ids = await self.leveling.list_item_ids(plan.bid_id)
                plan.alternate_ids = await self.leveling.list_alternate_ids(plan.bid_id)

        async def delete_removed_items():
            if plan.bid_id:
                await self.leveling.delete_items(removed_ids(plan.item_ids, [i.id for i in items]))

        async def delete_removed_alternates():
            if plan.bid_id:
                await self.leveling.delete_alternates(removed_ids(plan.alternate_ids, [a.id for a in alts]))

        async def save_items():
            if not plan.bid_id:
                return
            rows = [
                {
                    "id": item.id,
                    "bid_id": plan.bid_id,
                    "kind": BASE_KIND,
                    "description": item.description,
                    "qty": item.qty,
                    "unit": item.unit.value,
                    "unit_price": item.unit_price,
                    "amount_override": item.amount_override,
                    "notes": item.notes,
                    "sort_order": item.sort_order if item.sort_order is not None else index + 1,
                }
                for index, item in enumerate(items)
            ]
            await self.leveling.save_items(rows, set(plan.item_ids))

        async def save_alternates():
            if not plan.bid_id:
                return
            rows = [
                {
                    "id": alt.id,
                    "bid_id": plan.bid_id,
                    "title": alt.title,
                    "accepted": alt.accepted,
                    "amount": alt.amount,
                    "notes": alt.notes,
                    "sort_order": alt.sort_order if alt.sort_order is not None else index + 1,
                }
                for index, alt in enumerate(alts)
            ]
            await self.leveling.save_alternates(rows, set(plan.alternate_ids))

        steps = [
            WriteStep("resolve_trade_bid", resolve_bid, StepPolicy.OPTIONAL_SCHEMA),
            WriteStep("load_existing_rows", load_existing, StepPolicy.OPTIONAL_SCHEMA),
            WriteStep("delete_removed_items", delete_removed_items, StepPolicy.OPTIONAL_SCHEMA),
            WriteStep("delete_removed_alternates", delete_removed_alternates, StepPolicy.OPTIONAL_SCHEMA),
            WriteStep("save_items", save_items, StepPolicy.OPTIONAL_SCHEMA),
            WriteStep("save_alternates", save_alternates, StepPolicy.OPTIONAL_SCHEMA),
        ]
        return await run_steps(self.session, steps, operation="save_breakdown")

    # ------------------------------------------------------------- snapshots
    async def create_snapshot(
        self,
        project_id: str,
        created_by: Optional[str],
        title: str,
        items: Sequence[Union[SnapshotEntry, Dict[str, Any]]],
    ) -> str:
        """Freeze the given entries under a new locked snapshot. Returns its id."""
        title = (title or "").strip()
        if not title:
            raise ValueError("snapshot title is required")
        entries = [e if isinstance(e, SnapshotEntry) else SnapshotEntry.model_validate(e) for e in items]
        rows = [
            {
                "trade_id": e.trade_id,
                "sub_id": e.sub_id,
                "base_bid_amount": e.base_bid_amount,
                "notes": e.notes,
                "included_json": to_jsonable_python(e.included_json),
                "line_items_json": to_jsonable_python(e.line_items_json),
            }
            for e in entries
        ]
        created: Dict[str, str] = {}

        async def insert_header():
            created["id"] = await self.leveling.insert_snapshot(project_id, created_by, title)

        async def insert_items():
            await self.leveling.insert_snapshot_items(created["id"], rows)

        steps = [
            WriteStep("insert_snapshot", insert_header),
            WriteStep("insert_snapshot_items", insert_items),
        ]
        await run_steps(self.session, steps, operation="create_snapshot")
        log.info("Snapshot %s created for project %s with %d item(s)", created["id"], project_id, len(rows))
        return created["id"]

    async def get_snapshot_items(self, snapshot_id: str) -> List[Dict[str, Any]]:
        if not snapshot_id:
            return []
        return await read_optional(
            self.session,
            lambda: self.leveling.list_snapshot_items(snapshot_id),
            [],
            what="leveling_snapshot_items",
        )

    async def _breakdown_payload(self, project_id: str, trade_id: str, sub_id: str) -> Dict[str, Any]:
        breakdown = await self.get_breakdown(project_id, trade_id, sub_id)
        if not breakdown.bid_id:
            return {}
        base_items = [{**item, "line_total": line_total(item)} for item in breakdown.base_items]
        payload: Dict[str, Any] = {
            "line_items_json": {
                "bid_id": breakdown.bid_id,
                "base_items": base_items,
                "alternates": breakdown.alternates,
                "base_total": sum((i["line_total"] for i in base_items), Decimal("0")),
            },
        }
        if breakdown.alternates:
            payload["included_json"] = {
                "alternates": {alt["id"]: bool(alt["accepted"]) for alt in breakdown.alternates}
            }
        return payload

    async def snapshot_current_view(
        self,
        project_id: str,
        created_by: Optional[str],
        title: str,
        notes: Optional[str] = None,
    ) -> Optional[str]:
        """Lock in the current round: one entry per trade and invited link."""
        view = await self.build_view(project_id)
        if view is None:
            return None

        snapshot_notes = (notes or "").strip()
        entries: List[SnapshotEntry] = []
        for trade in view.trades:
            for link in view.project_subs:
                bid = view.bid(trade["id"], link["id"])
                payload = await self._breakdown_payload(project_id, trade["id"], link["id"]) if bid else {}
                entry_notes = "\n".join(part for part in (snapshot_notes, bid.notes if bid else None) if part)
                entries.append(
                    SnapshotEntry(
                        trade_id=trade["id"],
                        sub_id=link["id"],
                        base_bid_amount=bid.base_bid_amount if bid else None,
                        notes=entry_notes or None,
                        **payload,
                    )
                )
        return await self.create_snapshot(project_id, created_by, title, entries)
