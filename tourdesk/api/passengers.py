"""
Passenger rows from the data API.

A passenger row embeds its order and the order's tour, which is where the
tour title and departure date used for grouping come from. Stream rows lack
the embedding, so partial=True leaves those derived fields untouched.
"""
import logging

from ..models import Entity

_LOGGER = logging.getLogger(__name__)

PASSENGER_SELECT = """
    *,
    orders (
        id, tour_id, departureDate, departure_date,
        tours ( id, title )
    )
"""


def parse_passenger(row: dict, partial: bool = False) -> Entity | None:
    if row.get("id") is None:
        _LOGGER.warning("Passenger row without id, skipping: %s", row)
        return None
    fields = dict(row)
    order = fields.pop("orders", None) or {}
    tour = order.get("tours") or {}
    for key in ("order_id", "user_id"):
        if fields.get(key) is not None:
            fields[key] = str(fields[key])

    title = tour.get("title") or row.get("tour_title") or None
    if title is not None or not partial:
        fields["tour_title"] = title
    if order.get("tour_id") is not None:
        fields["tour_id"] = str(order["tour_id"])
    departure = order.get("departure_date") or order.get("departureDate") or row.get("departure_date") or None
    if departure is not None or not partial:
        fields["departure_date"] = departure

    if not partial or "passport_expiry" in row or "passport_expire" in row:
        fields["passport_expire"] = row.get("passport_expiry") or row.get("passport_expire") or None
    if not partial or "room_allocation" in row or "room_number" in row:
        fields["room_allocation"] = row.get("room_allocation") or row.get("room_number") or ""
    if not partial or "additional_services" in row:
        fields["additional_services"] = list(row.get("additional_services") or [])
    if not partial or "seat_count" in row:
        fields["seat_count"] = row.get("seat_count") or 1
    if not partial or "is_blacklisted" in row:
        fields["is_blacklisted"] = bool(row.get("is_blacklisted") or False)
    if not partial or "status" in row:
        fields["status"] = row.get("status") or "active"
    return Entity.from_row(fields)
