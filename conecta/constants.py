DEFAULT_ROLES = [
    ("admin", "Brokerage administrator with full access"),
    ("manager", "Transaction manager; can delete transactions and assign assistants"),
    ("agent", "Licensed agent working transactions"),
    ("assistant", "Transaction coordinator limited to assigned transactions"),
]

TRANSACTION_TYPES = ("purchase", "sale", "lease", "rental")
TRANSACTION_STATUSES = ("pending", "closed", "cancelled")
PRIORITIES = ("low", "medium", "high", "urgent")
TASK_STATUSES = ("pending", "completed", "cancelled", "overdue", "not_applicable")

# Task statuses that count as done for progress and for closing a transaction.
TASK_DONE_STATUSES = ("completed", "not_applicable")

# Secondary ordering for transaction listings; unknown statuses sort last.
STATUS_SORT_RANK = {"pending": 1, "closed": 2, "cancelled": 3}
STATUS_SORT_RANK_OTHER = 4

PRIORITY_SORT_RANK = {"urgent": 1, "high": 2, "medium": 3}
PRIORITY_SORT_RANK_OTHER = 4

ANCHOR_DATE_FIELDS = {
    "contract": "contract_date",
    "due_diligence": "due_diligence_date",
    "inspection": "inspection_date",
    "appraisal": "appraisal_date",
    "closing": "closing_date",
}

# Used when no stored template exists for a transaction type.
DEFAULT_TASK_TEMPLATES = [
    {
        "event_name": "Review executed contract",
        "description": "Confirm signatures, initials and dates on the executed contract.",
        "anchor": "contract",
        "days_offset": 1,
        "priority": "high",
    },
    {
        "event_name": "Collect earnest money deposit",
        "description": "Verify the earnest money deposit was received by the escrow holder.",
        "anchor": "contract",
        "days_offset": 3,
        "priority": "high",
    },
    {
        "event_name": "Due diligence deadline",
        "description": "Confirm due diligence money and any termination notices.",
        "anchor": "due_diligence",
        "days_offset": 0,
        "priority": "urgent",
    },
    {
        "event_name": "Home inspection",
        "description": "Schedule the inspection and share the report with the client.",
        "anchor": "inspection",
        "days_offset": 0,
        "priority": "medium",
    },
    {
        "event_name": "Appraisal",
        "description": "Track the appraisal order and review the valuation.",
        "anchor": "appraisal",
        "days_offset": 0,
        "priority": "medium",
    },
    {
        "event_name": "Final walkthrough",
        "description": "Walk the property with the client before closing.",
        "anchor": "closing",
        "days_offset": -1,
        "priority": "medium",
    },
    {
        "event_name": "Closing",
        "description": "Attend closing and confirm funds and documents are delivered.",
        "anchor": "closing",
        "days_offset": 0,
        "priority": "urgent",
    },
]

DEFAULT_DOCUMENT_TYPES = [
    ("contract", "Purchase or lease contract"),
    ("addendum", "Contract addendum or amendment"),
    ("disclosure", "Seller disclosures"),
    ("inspection_report", "Inspection report"),
    ("appraisal", "Appraisal report"),
    ("closing_statement", "Closing or settlement statement"),
    ("other", "Other supporting document"),
]

SYSTEM_DRIVE_USER_ID = "system"
DRIVE_TOKEN_REFRESH_SKEW_SECONDS = 5 * 60
DRIVE_DEFAULT_TOKEN_TTL_SECONDS = 60 * 60
DRIVE_SCOPES = (
    "https://www.googleapis.com/auth/drive.file",
    "https://www.googleapis.com/auth/drive.metadata.readonly",
)

DEFAULT_PREFERRED_LANGUAGE = "es"

STAFF_COOKIE_NAME = "auth-token"
PORTAL_COOKIE_NAME = "portal-auth-token"
