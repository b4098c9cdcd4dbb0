"""Tour rows from the data API."""
import logging

from ..models import Entity

_LOGGER = logging.getLogger(__name__)

TOUR_SELECT = "*"


def parse_tour(row: dict, partial: bool = False) -> Entity | None:
    """Map a raw tour row onto an Entity; rows without id or title are dropped."""
    if row.get("id") is None or (not partial and not row.get("title")):
        _LOGGER.warning("Invalid tour data, skipping: %s", row)
        return None
    fields = dict(row)
    if fields.get("created_by") is not None:
        fields["created_by"] = str(fields["created_by"])
    if row.get("title"):
        fields["tour_title"] = str(row["title"]).strip()
    if not partial or "departure_date" in row or "departureDate" in row:
        fields["departure_date"] = row.get("departure_date") or row.get("departureDate") or None
    fields.pop("departureDate", None)
    for key in ("dates", "services", "hotels"):
        if not partial or key in row:
            fields[key] = list(row.get(key) or [])
    if not partial or "status" in row:
        fields["status"] = row.get("status") or "active"
    return Entity.from_row(fields)
