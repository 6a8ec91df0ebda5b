from __future__ import annotations

from typing import Literal

from pydantic import BaseModel


class MemberInfo(BaseModel):
    id: str
    name: str
    email: str = ""


class Todo(BaseModel):
    id: str
    title: str
    completed: bool = False
    assigned_to: str | None = None
    due_date: float | None = None
    completed_at: float | None = None
    created_at: float


class CalendarEvent(BaseModel):
    id: str
    title: str
    start_date: float
    assigned_to: str | None = None


class GroceryItem(BaseModel):
    id: str
    name: str
    category: str | None = None
    checked: bool = False
    checked_at: float | None = None
    notes: str | None = None
    created_at: float


class FamilyDocument(BaseModel):
    id: str
    file_name: str
    created_at: float


class MemberStats(BaseModel):
    member: MemberInfo
    pending_todos: int = 0
    overdue_todos: int = 0
    completed_this_week: int = 0
    completion_rate: float = 0.0
    productivity: Literal["high", "medium", "low"] = "medium"


class MemberEventStats(BaseModel):
    member: MemberInfo
    upcoming_events: int = 0
    events_this_week: int = 0
    event_types: list[str] = []


class CategoryStats(BaseModel):
    category: str
    pending_items: int = 0
    total_items: int = 0
    urgent_items: int = 0


class DocumentTypeStats(BaseModel):
    type: str
    count: int = 0
    recent_count: int = 0


class TodoSummary(BaseModel):
    pending: list[Todo] = []
    overdue: list[Todo] = []
    completed_recent: list[Todo] = []
    total_count: int = 0
    completion_rate: float = 0.0
    member_stats: list[MemberStats] = []


class EventSummary(BaseModel):
    upcoming: list[CalendarEvent] = []
    this_week: list[CalendarEvent] = []
    next_week: list[CalendarEvent] = []
    total_count: int = 0
    member_events: list[MemberEventStats] = []


class GrocerySummary(BaseModel):
    pending: list[GroceryItem] = []
    urgent_items: list[GroceryItem] = []
    completed_recent: list[GroceryItem] = []
    total_count: int = 0
    completion_rate: float = 0.0
    category_stats: list[CategoryStats] = []


class DocumentSummary(BaseModel):
    recent: list[FamilyDocument] = []
    total_count: int = 0
    type_stats: list[DocumentTypeStats] = []


class FamilySummary(BaseModel):
    generated_at: float
    aggregation_seconds: float = 0.0
    overall_status: Literal["fresh", "stale", "outdated"] = "fresh"
    total_active_tasks: int = 0
    urgent_items_count: int = 0
    health_score: float = 100.0


class AggregatedFamilyData(BaseModel):
    """Snapshot of every family collection, as handed to the dashboard and the AI assistant."""
    todos: TodoSummary
    events: EventSummary
    groceries: GrocerySummary
    documents: DocumentSummary
    family_members: list[MemberInfo] = []
    summary: FamilySummary
