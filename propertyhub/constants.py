ROLE_PROPERTY_MANAGER = "PROPERTY_MANAGER"
ROLE_OWNER = "OWNER"
ROLE_TENANT = "TENANT"
ROLE_TECHNICIAN = "TECHNICIAN"
ROLE_ADMIN = "ADMIN"

PROPERTY_STATUSES = ("ACTIVE", "INACTIVE", "UNDER_MAINTENANCE")
IMAGE_CATEGORIES = ("EXTERIOR", "INTERIOR", "KITCHEN", "BATHROOM", "BEDROOM", "OTHER")
PARKING_TYPES = ("NONE", "STREET", "DRIVEWAY", "GARAGE", "COVERED", "UNCOVERED")

DOCUMENT_CATEGORIES = (
    "LEASE_AGREEMENT",
    "INSURANCE",
    "PERMIT",
    "INSPECTION_REPORT",
    "MAINTENANCE_RECORD",
    "FINANCIAL",
    "LEGAL",
    "PHOTOS",
    "OTHER",
)
DOCUMENT_ACCESS_LEVELS = ("PUBLIC", "TENANT", "OWNER", "PROPERTY_MANAGER")


# None means unlimited
PLAN_PROPERTY_LIMITS = {
    "FREE_TRIAL": 10,
    "BASIC": 10,
    "PROFESSIONAL": 50,
    "ENTERPRISE": None,
}

ALLOWED_IMAGE_EXTENSIONS = (".jpg", ".jpeg", ".png", ".gif", ".webp")

MAX_IMAGE_LOCATION_LENGTH = 2048
DISALLOWED_URL_SCHEMES = ("javascript:", "vbscript:", "file:", "about:", "blob:")

LIST_IMAGES_PREVIEW_LIMIT = 10
DETAIL_UNITS_LIMIT = 100
MAX_SEARCH_LENGTH = 200
