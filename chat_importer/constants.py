"""Shared constants for the chat import executor."""

# Plan directory layout
PLAN_FILE_NAME = "import-plan.json"
PROGRESS_SUMMARY_FILE = "progress.json"
PROGRESS_LOG_FILE = "progress.jsonl"
DRY_RUN_SUMMARY_FILE = "progress.dry-run.json"
DRY_RUN_LOG_FILE = "progress.dry-run.jsonl"
RUN_LOG_FILE = "importer.log"
DEFAULT_CONFIG_FILE = "config.yaml"

# Plan / ledger schema
SUPPORTED_PLAN_MAJOR_VERSION = 1
SUMMARY_SCHEMA_VERSION = 1

# Pacing defaults (seconds / attempts)
DEFAULT_MIN_DELAY = 3
DEFAULT_MAX_DELAY = 10
MIN_ALLOWED_DELAY = 1
MAX_ALLOWED_DELAY = 60
DEFAULT_DAILY_CEILING = 1000
ROLLING_WINDOW_SECONDS = 24 * 60 * 60

# Retry
DEFAULT_MAX_ATTEMPTS = 3
MAX_ALLOWED_ATTEMPTS = 10

# Channel gateway
DEFAULT_CHANNEL_TIMEOUT = 30
HTTP_OK = 200
HTTP_BAD_REQUEST = 400
HTTP_UNAUTHORIZED = 401
HTTP_FORBIDDEN = 403
HTTP_NOT_FOUND = 404
HTTP_BAD_GATEWAY = 502
HTTP_SERVICE_UNAVAILABLE = 503
HTTP_GATEWAY_TIMEOUT = 504
CONNECTION_SCOPED_STATUSES = frozenset(
    {
        HTTP_UNAUTHORIZED,
        HTTP_FORBIDDEN,
        HTTP_BAD_GATEWAY,
        HTTP_SERVICE_UNAVAILABLE,
        HTTP_GATEWAY_TIMEOUT,
    }
)

# Destination ids accepted by --target_chat (contact or group chat)
DESTINATION_PATTERN = r"^[\w.-]+@(c|g)\.us$"

# Report
TOP_ERRORS_LIMIT = 10
LOW_SUCCESS_RATE_THRESHOLD = 50.0
