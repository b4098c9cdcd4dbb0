"""Per-table wiring: which parser, filter and required fields belong to each entity kind."""
from __future__ import annotations

import dataclasses
from typing import Callable

from .api.orders import ORDER_SELECT, parse_order
from .api.passengers import PASSENGER_SELECT, parse_passenger
from .api.tours import TOUR_SELECT, parse_tour
from .const import (
    ACTIVE_ORDER_STATUSES,
    TABLE_ORDERS,
    TABLE_PASSENGERS,
    TABLE_TOURS,
    VISIBILITY_COLUMN,
)
from .models import Entity, EntityFilter


@dataclasses.dataclass(frozen=True)
class TableSpec:
    """
    Static description of one remote table.

    statuses=None means the table is not filtered by status.
    visibility_column names an optional column that is only filtered on
    once the capability probe has confirmed it exists.
    """

    name: str
    select: str
    parse_row: Callable[..., Entity | None]
    statuses: frozenset[str] | None = None
    visibility_column: str | None = None
    required_fields: tuple[str, ...] = ()

    def build_filter(self, visibility_available: bool | None) -> EntityFilter:
        visibility = self.visibility_column if visibility_available else None
        return EntityFilter(statuses=self.statuses, visibility_field=visibility)

    def parse_rows(self, rows: list[dict]) -> list[Entity]:
        parsed = [self.parse_row(row) for row in rows]
        return [entity for entity in parsed if entity is not None]


ORDERS = TableSpec(
    name=TABLE_ORDERS,
    select=ORDER_SELECT,
    parse_row=parse_order,
    statuses=ACTIVE_ORDER_STATUSES,
    visibility_column=VISIBILITY_COLUMN,
    required_fields=("tour_id",),
)

TOURS = TableSpec(
    name=TABLE_TOURS,
    select=TOUR_SELECT,
    parse_row=parse_tour,
    visibility_column=VISIBILITY_COLUMN,
    required_fields=("title",),
)

PASSENGERS = TableSpec(
    name=TABLE_PASSENGERS,
    select=PASSENGER_SELECT,
    parse_row=parse_passenger,
    required_fields=("order_id", "first_name", "last_name"),
)

TABLES = {spec.name: spec for spec in (ORDERS, TOURS, PASSENGERS)}


def get_table(name: str) -> TableSpec:
    try:
        return TABLES[name]
    except KeyError:
        raise KeyError(f"Unknown table: {name}") from None
