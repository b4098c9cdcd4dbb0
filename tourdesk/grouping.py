"""
GroupingProjector — derives the grouped dashboard view from a flat collection.

Pure functions over Entity values; nothing here holds state between calls.
Every projection is recomputed from scratch, which is fine for the tens to
low hundreds of records a provider dashboard shows.
"""
from __future__ import annotations

import dataclasses
import math
from typing import Any, Iterable, Sequence

from .const import (
    CANCELLED_STATUSES,
    COMPLETED_STATUS,
    GROUP_KEY_SEPARATOR,
    NO_DATE,
    UNKNOWN_TITLE,
)
from .dateutils import format_display_date, normalize_day
from .models import Entity

TAB_ACTIVE = "active"
TAB_COMPLETED = "completed"
TAB_ALL = "all"
TABS = (TAB_ACTIVE, TAB_COMPLETED, TAB_ALL)


def normalize_title(value: Any) -> str:
    if value is None:
        return UNKNOWN_TITLE
    title = str(value).strip()
    return title or UNKNOWN_TITLE


@dataclasses.dataclass(frozen=True)
class GroupKey:
    date: str
    title: str
    order_id: str | None = None

    def __str__(self) -> str:
        parts = [self.date, self.title]
        if self.order_id is not None:
            parts.append(self.order_id)
        return GROUP_KEY_SEPARATOR.join(parts)


@dataclasses.dataclass(frozen=True)
class TourGroup:
    key: GroupKey
    members: tuple[Entity, ...]
    is_completed: bool

    @property
    def date(self) -> str:
        return self.key.date

    @property
    def title(self) -> str:
        return self.key.title

    def ids(self) -> set[str]:
        return {member.id for member in self.members}


@dataclasses.dataclass(frozen=True)
class DateGroup:
    date: str
    display: str
    groups: tuple[TourGroup, ...]

    @property
    def key(self) -> str:
        return self.date

    @property
    def member_count(self) -> int:
        return sum(len(group.members) for group in self.groups)


@dataclasses.dataclass(frozen=True)
class ProjectionParams:
    search: str = ""
    selected_date: str | None = None
    tab: str = TAB_ACTIVE

    def __post_init__(self) -> None:
        if self.tab not in TABS:
            raise ValueError(f"Unknown tab: {self.tab}")


@dataclasses.dataclass(frozen=True)
class Projection:
    """
    active / completed: date groups split by completion, in display order.
    visible: what the selected tab shows after the date and search filters.
    counts: member records per tab, before date and search filtering.
    """

    active: tuple[DateGroup, ...]
    completed: tuple[DateGroup, ...]
    visible: tuple[DateGroup, ...]
    counts: dict[str, int]
    total: int

    def visible_members(self) -> list[Entity]:
        return [m for date_group in self.visible for group in date_group.groups for m in group.members]


@dataclasses.dataclass(frozen=True)
class Page:
    items: list
    page: int
    per_page: int
    total: int
    pages: int

    @property
    def has_next(self) -> bool:
        return self.page < self.pages

    @property
    def has_previous(self) -> bool:
        return self.page > 1


def paginate(items: Sequence, page: int, per_page: int) -> Page:
    """1-based pagination; page is clamped into the valid range."""
    if per_page < 1:
        raise ValueError("per_page must be at least 1")
    total = len(items)
    pages = max(1, math.ceil(total / per_page))
    page = min(max(1, page), pages)
    start = (page - 1) * per_page
    return Page(list(items[start:start + per_page]), page, per_page, total, pages)


def _nested_passengers(entity: Entity) -> list[dict]:
    return list(entity.get("passengers") or []) + list(entity.get("passenger_requests") or [])


def _lead_name(entity: Entity) -> str:
    nested = _nested_passengers(entity)
    lead = nested[0] if nested else entity
    first = lead.get("first_name") or ""
    last = lead.get("last_name") or ""
    return f"{first} {last}".strip().lower()


def _member_sort_key(entity: Entity) -> tuple[str, str]:
    return (str(entity.get("created_at") or ""), entity.id)


def _dated_first(date_groups: Sequence[DateGroup], descending: bool) -> tuple[DateGroup, ...]:
    dated = sorted((g for g in date_groups if g.date != NO_DATE), key=lambda g: g.date, reverse=descending)
    undated = [g for g in date_groups if g.date == NO_DATE]
    return tuple(dated + undated)


class GroupingProjector:
    """Buckets entities by (date, title) or (date, title, order id)."""

    def __init__(self, date_field: str = "departure_date", title_field: str = "tour_title", by_order: bool = False):
        self.date_field = date_field
        self.title_field = title_field
        self.by_order = by_order

    def group_key(self, entity: Entity) -> GroupKey:
        date = normalize_day(entity.get(self.date_field))
        title = normalize_title(entity.get(self.title_field))
        if self.by_order:
            order_id = entity.get("order_id") or entity.id
            return GroupKey(date, title, str(order_id))
        return GroupKey(date, title)

    @staticmethod
    def is_terminal(entity: Entity) -> bool:
        """Cancelled, completed, or every nested passenger completed."""
        status = entity.get("status")
        if status in CANCELLED_STATUSES or status == COMPLETED_STATUS:
            return True
        nested = _nested_passengers(entity)
        return bool(nested) and all(p.get("status") == COMPLETED_STATUS for p in nested)

    def group(self, entities: Iterable[Entity]) -> list[TourGroup]:
        buckets: dict[GroupKey, list[Entity]] = {}
        for entity in entities:
            buckets.setdefault(self.group_key(entity), []).append(entity)
        groups = []
        for key, members in buckets.items():
            members.sort(key=_member_sort_key)
            completed = all(self.is_terminal(member) for member in members)
            groups.append(TourGroup(key, tuple(members), completed))
        groups.sort(key=lambda g: (g.key.date, g.key.title, g.key.order_id or ""))
        return groups

    @staticmethod
    def _by_date(groups: Iterable[TourGroup]) -> list[DateGroup]:
        per_date: dict[str, list[TourGroup]] = {}
        for group in groups:
            per_date.setdefault(group.date, []).append(group)
        return [
            DateGroup(date, format_display_date(date), tuple(members))
            for date, members in per_date.items()
        ]

    def _matches(self, entity: Entity, term: str) -> bool:
        if not term:
            return True
        title = normalize_title(entity.get(self.title_field)).lower()
        return term in _lead_name(entity) or term in title

    def _filtered(self, date_groups: Iterable[DateGroup], params: ProjectionParams) -> tuple[DateGroup, ...]:
        term = params.search.strip().lower()
        result = []
        for date_group in date_groups:
            if params.selected_date and date_group.date != normalize_day(params.selected_date):
                continue
            groups = []
            for group in date_group.groups:
                members = tuple(m for m in group.members if self._matches(m, term))
                if members:
                    groups.append(dataclasses.replace(group, members=members))
            if groups:
                result.append(dataclasses.replace(date_group, groups=tuple(groups)))
        return tuple(result)

    def project(self, entities: Iterable[Entity], params: ProjectionParams | None = None) -> Projection:
        params = params or ProjectionParams()
        groups = self.group(entities)
        active = _dated_first(self._by_date(g for g in groups if not g.is_completed), descending=False)
        completed = _dated_first(self._by_date(g for g in groups if g.is_completed), descending=True)
        everything = _dated_first(self._by_date(groups), descending=False)

        counts = {
            TAB_ACTIVE: sum(d.member_count for d in active),
            TAB_COMPLETED: sum(d.member_count for d in completed),
            TAB_ALL: sum(d.member_count for d in everything),
        }
        source = {TAB_ACTIVE: active, TAB_COMPLETED: completed, TAB_ALL: everything}[params.tab]
        visible = self._filtered(source, params)
        total = sum(d.member_count for d in visible)
        return Projection(active, completed, visible, counts, total)
