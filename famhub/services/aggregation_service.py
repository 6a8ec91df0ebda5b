"""Family data aggregation: reads every collection and derives dashboard statistics."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Callable

import aiosqlite
from pydantic import BaseModel

from famhub.db.queries import family as family_queries
from famhub.exceptions import DataAggregationError
from famhub.models.family import (
    AggregatedFamilyData,
    CalendarEvent,
    CategoryStats,
    DocumentSummary,
    DocumentTypeStats,
    EventSummary,
    FamilyDocument,
    FamilySummary,
    GroceryItem,
    GrocerySummary,
    MemberEventStats,
    MemberInfo,
    MemberStats,
    Todo,
    TodoSummary,
)

logger = logging.getLogger(__name__)

DAY = 24 * 60 * 60
SLOW_AGGREGATION_SECONDS = 3.0

URGENT_MARKERS = ("urgent", "high priority")

EVENT_TYPE_KEYWORDS = [
    ("education", ("school", "meeting", "pta")),
    ("medical", ("doctor", "medical", "appointment")),
    ("social", ("birthday", "party", "celebration")),
    ("work", ("work", "office", "business")),
    ("fitness", ("sport", "gym", "exercise")),
]

DOCUMENT_TYPES = {
    "pdf": "PDF",
    "doc": "Word Document",
    "docx": "Word Document",
    "xls": "Spreadsheet",
    "xlsx": "Spreadsheet",
    "jpg": "Image",
    "jpeg": "Image",
    "png": "Image",
    "gif": "Image",
    "mp4": "Video",
    "avi": "Video",
    "mov": "Video",
}


class AggregationConfig(BaseModel):
    days_for_recent: int = 7
    days_for_upcoming: int = 14
    max_items_per_category: int = 50
    include_completed: bool = True


class DataAggregationService:
    """Builds an ``AggregatedFamilyData`` snapshot from the SQLite database."""

    def __init__(
        self,
        db: aiosqlite.Connection,
        config: AggregationConfig | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._db = db
        self._config = config or AggregationConfig()
        self._clock = clock

    async def aggregate_family_data(self) -> AggregatedFamilyData:
        """Read all collections concurrently and summarise them.

        Raises DataAggregationError if any collection cannot be read.
        """
        start = time.monotonic()
        try:
            todos, events, groceries, documents, members = await asyncio.gather(
                self._aggregate_todos(),
                self._aggregate_events(),
                self._aggregate_groceries(),
                self._aggregate_documents(),
                self._family_members(),
            )
        except DataAggregationError:
            raise
        except Exception as e:
            raise DataAggregationError(f"Failed to aggregate family data: {e}") from e

        elapsed = time.monotonic() - start
        if elapsed > SLOW_AGGREGATION_SECONDS:
            logger.warning("Data aggregation took %.1fs - consider optimization", elapsed)

        todos.member_stats = self._member_todo_stats(members, todos)

        return AggregatedFamilyData(
            todos=todos,
            events=events,
            groceries=groceries,
            documents=documents,
            family_members=members,
            summary=self._summarize(todos, groceries, elapsed),
        )

    async def health_check(self) -> bool:
        try:
            await family_queries.ping(self._db)
            return True
        except Exception as e:
            logger.error("Data aggregation health check failed: %s", e)
            return False

    # ------------------------------------------------------------------
    # Collections
    # ------------------------------------------------------------------

    async def _aggregate_todos(self) -> TodoSummary:
        try:
            rows = await family_queries.list_todos(self._db, self._config.max_items_per_category)
        except Exception as e:
            raise DataAggregationError(f"Failed to aggregate todo data: {e}", "TODO_AGGREGATION_FAILED") from e

        now = self._clock()
        recent_cutoff = now - self._config.days_for_recent * DAY
        todos = [Todo(**r) for r in rows]

        pending = [t for t in todos if not t.completed]
        overdue = [t for t in pending if t.due_date is not None and t.due_date < now]
        completed = [t for t in todos if t.completed]
        completed_recent = (
            [t for t in completed if t.completed_at is not None and t.completed_at >= recent_cutoff]
            if self._config.include_completed
            else []
        )

        return TodoSummary(
            pending=pending,
            overdue=overdue,
            completed_recent=completed_recent,
            total_count=len(todos),
            completion_rate=_percent(len(completed), len(todos)),
        )

    async def _aggregate_events(self) -> EventSummary:
        now = self._clock()
        try:
            rows = await family_queries.list_upcoming_events(
                self._db, now, self._config.max_items_per_category
            )
        except Exception as e:
            raise DataAggregationError(f"Failed to aggregate event data: {e}", "EVENT_AGGREGATION_FAILED") from e

        events = [CalendarEvent(**r) for r in rows]
        week_end = now + 7 * DAY
        next_week_end = now + 14 * DAY
        upcoming_cutoff = now + self._config.days_for_upcoming * DAY

        return EventSummary(
            upcoming=[e for e in events if e.start_date <= upcoming_cutoff],
            this_week=[e for e in events if e.start_date <= week_end],
            next_week=[e for e in events if week_end < e.start_date <= next_week_end],
            total_count=len(events),
            member_events=self._member_event_stats(events, week_end),
        )

    async def _aggregate_groceries(self) -> GrocerySummary:
        try:
            rows = await family_queries.list_groceries(self._db, self._config.max_items_per_category)
        except Exception as e:
            raise DataAggregationError(f"Failed to aggregate grocery data: {e}", "GROCERY_AGGREGATION_FAILED") from e

        recent_cutoff = self._clock() - self._config.days_for_recent * DAY
        items = [GroceryItem(**r) for r in rows]

        pending = [i for i in items if not i.checked]
        checked = [i for i in items if i.checked]
        completed_recent = (
            [i for i in checked if i.checked_at is not None and i.checked_at >= recent_cutoff]
            if self._config.include_completed
            else []
        )

        return GrocerySummary(
            pending=pending,
            urgent_items=[i for i in pending if _is_urgent(i)],
            completed_recent=completed_recent,
            total_count=len(items),
            completion_rate=_percent(len(checked), len(items)),
            category_stats=self._category_stats(items),
        )

    async def _aggregate_documents(self) -> DocumentSummary:
        try:
            rows = await family_queries.list_documents(self._db, self._config.max_items_per_category)
        except Exception as e:
            raise DataAggregationError(
                f"Failed to aggregate document data: {e}", "DOCUMENT_AGGREGATION_FAILED"
            ) from e

        recent_cutoff = self._clock() - self._config.days_for_recent * DAY
        documents = [FamilyDocument(**r) for r in rows]

        type_stats: dict[str, DocumentTypeStats] = {}
        for doc in documents:
            doc_type = infer_document_type(doc.file_name)
            stats = type_stats.setdefault(doc_type, DocumentTypeStats(type=doc_type))
            stats.count += 1
            if doc.created_at >= recent_cutoff:
                stats.recent_count += 1

        return DocumentSummary(
            recent=[d for d in documents if d.created_at >= recent_cutoff],
            total_count=len(documents),
            type_stats=sorted(type_stats.values(), key=lambda s: s.count, reverse=True),
        )

    async def _family_members(self) -> list[MemberInfo]:
        try:
            rows = await family_queries.list_family_members(self._db)
        except Exception as e:
            raise DataAggregationError(f"Failed to get family members: {e}", "FAMILY_MEMBERS_FAILED") from e
        return [MemberInfo(**r) for r in rows]

    # ------------------------------------------------------------------
    # Statistics
    # ------------------------------------------------------------------

    def _member_todo_stats(self, members: list[MemberInfo], todos: TodoSummary) -> list[MemberStats]:
        now = self._clock()
        stats = {m.id: MemberStats(member=m) for m in members}

        for todo in todos.pending:
            s = stats.get(todo.assigned_to or "")
            if s is None:
                continue
            s.pending_todos += 1
            if todo.due_date is not None and todo.due_date < now:
                s.overdue_todos += 1
        for todo in todos.completed_recent:
            s = stats.get(todo.assigned_to or "")
            if s is not None:
                s.completed_this_week += 1

        for s in stats.values():
            s.completion_rate = _percent(s.completed_this_week, s.pending_todos + s.completed_this_week)
            if s.completion_rate >= 80 and s.overdue_todos == 0:
                s.productivity = "high"
            elif s.completion_rate < 50 or s.overdue_todos > 2:
                s.productivity = "low"
            else:
                s.productivity = "medium"

        return list(stats.values())

    def _member_event_stats(self, events: list[CalendarEvent], week_end: float) -> list[MemberEventStats]:
        stats: dict[str, MemberEventStats] = {}
        for event in events:
            if not event.assigned_to:
                continue
            s = stats.setdefault(
                event.assigned_to,
                MemberEventStats(member=MemberInfo(id=event.assigned_to, name=event.assigned_to)),
            )
            s.upcoming_events += 1
            if event.start_date <= week_end:
                s.events_this_week += 1
            event_type = infer_event_type(event.title)
            if event_type not in s.event_types:
                s.event_types.append(event_type)
        return list(stats.values())

    def _category_stats(self, items: list[GroceryItem]) -> list[CategoryStats]:
        stats: dict[str, CategoryStats] = {}
        for item in items:
            category = item.category or "Other"
            s = stats.setdefault(category, CategoryStats(category=category))
            s.total_items += 1
            if not item.checked:
                s.pending_items += 1
                if _is_urgent(item):
                    s.urgent_items += 1
        return sorted(stats.values(), key=lambda s: s.total_items, reverse=True)

    def _summarize(self, todos: TodoSummary, groceries: GrocerySummary, elapsed: float) -> FamilySummary:
        health = 100.0
        health -= len(todos.overdue) * 5
        if todos.completion_rate < 70:
            health -= (70 - todos.completion_rate) * 0.5
        health -= len(groceries.urgent_items) * 3

        if elapsed < 2:
            status = "fresh"
        elif elapsed < 5:
            status = "stale"
        else:
            status = "outdated"

        return FamilySummary(
            generated_at=self._clock(),
            aggregation_seconds=elapsed,
            overall_status=status,
            total_active_tasks=len(todos.pending) + len(groceries.pending),
            urgent_items_count=len(todos.overdue) + len(groceries.urgent_items),
            health_score=max(0.0, min(100.0, health)),
        )


def infer_event_type(title: str) -> str:
    lowered = title.lower()
    for event_type, keywords in EVENT_TYPE_KEYWORDS:
        if any(k in lowered for k in keywords):
            return event_type
    return "general"


def infer_document_type(file_name: str) -> str:
    extension = file_name.rsplit(".", 1)[-1].lower() if "." in file_name else ""
    return DOCUMENT_TYPES.get(extension, "Other")


def _is_urgent(item: GroceryItem) -> bool:
    return bool(item.notes) and any(m in item.notes for m in URGENT_MARKERS)


def _percent(part: int, whole: int) -> float:
    return part / whole * 100 if whole else 0.0
