"""
Order rows from the data API.

Responsible for:
- The select expression that embeds an order's passengers and creator email
- Mapping raw rows onto Entity instances with normalised field names

Rows pushed by the change stream carry only the order's own columns; parse
them with partial=True so embedded data already held locally is not blanked.
"""
import logging

from ..models import Entity

_LOGGER = logging.getLogger(__name__)

ORDER_SELECT = """
    *,
    passengers (
        id, first_name, last_name, date_of_birth, age, gender,
        passport_number, passport_expiry, nationality, roomType,
        room_allocation, hotel, additional_services, allergy,
        email, phone, emergency_phone, price, status, notes
    ),
    users!created_by(email)
"""

_ID_FIELDS = ("user_id", "tour_id", "created_by", "edited_by")


def parse_order(row: dict, partial: bool = False) -> Entity | None:
    """Map a single raw order row onto an Entity; None when it has no id."""
    if row.get("id") is None:
        _LOGGER.warning("Order row without id, skipping: %s", row)
        return None
    fields = dict(row)
    for key in _ID_FIELDS:
        if fields.get(key) is not None:
            fields[key] = str(fields[key])

    # departure date arrives as departure_date or departureDate depending on writer
    if not partial or "departure_date" in row or "departureDate" in row:
        fields["departure_date"] = row.get("departure_date") or row.get("departureDate") or None
    fields.pop("departureDate", None)

    tour = fields.pop("tours", None) or {}
    title = tour.get("title") or row.get("tour_title") or row.get("tour") or row.get("travel_choice") or None
    if title is not None or not partial:
        fields["tour_title"] = title

    users = fields.pop("users", None) or {}
    email = users.get("email") or row.get("created_by_email") or row.get("createdBy") or None
    if email is not None or not partial:
        fields["created_by_email"] = email
    fields.pop("createdBy", None)

    if not partial or "passengers" in row:
        fields["passengers"] = list(row.get("passengers") or [])
    if not partial or "status" in row:
        fields["status"] = row.get("status") or "pending"
    return Entity.from_row(fields)
