"""
Export helpers: orders as CSV / XLSX and the blank passenger import template.

All functions are pure serialisers over already-reconciled entities.
"""
from __future__ import annotations

import csv
import datetime
import io
import logging
from typing import Any, Iterable

from openpyxl import Workbook
from openpyxl.styles import Font

from .const import ORDER_EXPORT_HEADERS, PASSENGER_TEMPLATE_HEADERS
from .dateutils import format_us_date
from .models import Entity

_LOGGER = logging.getLogger(__name__)

MISSING = "N/A"
NOT_SET = "Not set"

FORMAT_CSV = "csv"
FORMAT_XLSX = "xlsx"


def _money(value: Any, default: str = "$0.00") -> str:
    if value in (None, ""):
        return default
    try:
        return f"${float(value):.2f}"
    except (TypeError, ValueError):
        return default


def _or_missing(value: Any) -> Any:
    if value is None or value == "":
        return MISSING
    return value


def order_to_row(order: Entity) -> list:
    """One export row, in ORDER_EXPORT_HEADERS order."""
    passengers = order.get("passengers") or []
    return [
        order.id,
        _or_missing(order.get("tour_title") or order.get("travel_choice")),
        format_us_date(order.get("departure_date")) or NOT_SET,
        len(passengers),
        _or_missing(order.get("status")),
        _money(order.get("total_amount")),
        _or_missing(order.get("created_by_email") or order.get("created_by")),
        format_us_date(order.get("edited_at")) or MISSING,
        _or_missing(order.get("payment_method")),
        _or_missing(order.get("phone")),
        _or_missing(order.get("first_name")),
        _or_missing(order.get("last_name")),
        _or_missing(order.get("email")),
        _or_missing(order.get("age")),
        _or_missing(order.get("gender")),
        _money(order.get("commission") or None, default=MISSING),
        _or_missing(order.get("hotel")),
        _or_missing(order.get("room_number")),
    ]


def orders_to_rows(orders: Iterable[Entity]) -> list[list]:
    return [order_to_row(order) for order in orders]


def orders_to_csv(orders: Iterable[Entity]) -> str:
    """Plain header line plus one fully quoted line per order."""
    buffer = io.StringIO()
    buffer.write(",".join(ORDER_EXPORT_HEADERS) + "\n")
    writer = csv.writer(buffer, quoting=csv.QUOTE_ALL, lineterminator="\n")
    writer.writerows(orders_to_rows(orders))
    return buffer.getvalue()


def orders_to_xlsx(orders: Iterable[Entity], sheet_title: str = "Orders") -> bytes:
    """Same table as orders_to_csv, as an .xlsx workbook with a bold header."""
    workbook = Workbook()
    sheet = workbook.active
    sheet.title = sheet_title
    sheet.append(ORDER_EXPORT_HEADERS)
    for cell in sheet[1]:
        cell.font = Font(bold=True)
    rows = orders_to_rows(orders)
    for row in rows:
        sheet.append(row)
    buffer = io.BytesIO()
    workbook.save(buffer)
    _LOGGER.debug("Built XLSX export with %s rows", len(rows))
    return buffer.getvalue()


def export_filename(ext: str = FORMAT_CSV, prefix: str = "provider-orders", today: datetime.date | None = None) -> str:
    today = today or datetime.date.today()
    return f"{prefix}-{today.isoformat()}.{ext}"


def passenger_template_csv() -> str:
    """Header-only CSV used as the passenger bulk-import template."""
    buffer = io.StringIO()
    csv.writer(buffer, lineterminator="\n").writerow(PASSENGER_TEMPLATE_HEADERS)
    return buffer.getvalue()
