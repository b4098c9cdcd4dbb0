VERSION = "0.3.0"

# Remote tables
TABLE_ORDERS = "orders"
TABLE_TOURS = "tours"
TABLE_PASSENGERS = "passengers"

# Optional column gating provider-side visibility; not every deployment has it.
VISIBILITY_COLUMN = "show_in_provider"

# Order statuses shown on the provider dashboard
ACTIVE_ORDER_STATUSES = frozenset({"confirmed", "pending"})

# Statuses that make a grouped record "finished"
CANCELLED_STATUSES = frozenset({"cancelled", "canceled", "declined", "rejected"})
COMPLETED_STATUS = "completed"

# Grouping sentinels
NO_DATE = "no-date"
NO_DATE_DISPLAY = "No Date"
UNKNOWN_TITLE = "Unknown Tour"
GROUP_KEY_SEPARATOR = "|||"

# Fields cleaned to YYYY-MM-DD (or None) before any write
DATE_FIELDS = frozenset({
    "date_of_birth",
    "passport_expire",
    "passport_expiry",
    "departure_date",
    "departureDate",
    "booking_date",
})

# Retry defaults (seconds)
RETRY_ATTEMPTS = 3
RETRY_DELAY = 1.0
RETRY_BACKOFF = 2.0
RETRY_MAX_DELAY = 30.0
RETRY_JITTER = 0.1

REQUEST_TIMEOUT = 10          # per HTTP request
WRITE_DELAY = 0.0             # minimum gap between consecutive writes on the same entity queue
PAGE_SIZE = 10

# Realtime websocket
REALTIME_HEARTBEAT_INTERVAL = 30   # seconds between phoenix heartbeats
REALTIME_JOIN_TIMEOUT = 10         # seconds to wait for phx_reply on join

# Capability probes
COLUMNS_RPC = "get_table_columns"

ORDER_EXPORT_HEADERS = [
    "Order ID", "Tour", "Departure Date", "Passengers", "Status",
    "Total Amount", "Created By", "Edited At", "Payment Method",
    "Phone", "First Name", "Last Name", "Email", "Age", "Gender",
    "Commission", "Hotel", "Room Number",
]

PASSENGER_TEMPLATE_HEADERS = [
    "Serial No", "First Name", "Last Name", "Email", "Phone",
    "Emergency Phone", "Date of Birth", "Age", "Gender", "Nationality",
    "Passport Number", "Passport Expiry", "Room Type", "Room Allocation",
    "Hotel", "Additional Services", "Allergies", "Status",
]
