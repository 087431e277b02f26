"""Centralized constants for mnemo.

All magic numbers and configuration defaults live here so every layer
imports from a single source of truth.
"""

# ---------- Persistence ----------
CURRENT_SCHEMA_VERSION = 1
SAVE_DEBOUNCE_MS = 1000
MIN_SAVE_INTERVAL_MS = 500
MAX_BACKUPS = 5
SAVE_RETRY_ATTEMPTS = 3
SAVE_RETRY_BASE_DELAY = 0.2  # seconds

# ---------- Queues ----------
DEFAULT_QUEUE_ID = "default"
DEFAULT_QUEUE_NAME = "Default"
STATS_CACHE_TTL_SECONDS = 30

# ---------- Daily limits ----------
DEFAULT_NEW_CARDS_PER_DAY = 20
DEFAULT_MAX_REVIEWS_PER_DAY = 200
DAILY_LIMIT_MIN = 1
DAILY_LIMIT_MAX = 1000

# ---------- FSRS ----------
DEFAULT_REQUEST_RETENTION = 0.9
DEFAULT_MAXIMUM_INTERVAL = 36500  # days
DEFAULT_ENABLE_FUZZ = False
FSRS_DIFFICULTY_MIN = 1.0
FSRS_DIFFICULTY_MAX = 10.0
LEARNING_FLOOR_MINUTES = 1
FUZZ_MIN_INTERVAL_DAYS = 3.0

# ---------- Sessions ----------
MAX_UNDO_DEPTH = 200

# ---------- Orphans ----------
MAX_ORPHAN_MATCHES = 5
MIN_MATCH_CONFIDENCE = 0.2

# ---------- Vault ----------
MARKDOWN_SUFFIX = ".md"
IGNORED_VAULT_DIRS = [".obsidian", ".trash", ".git"]
