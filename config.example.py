# config.example.py

"""
Documentation-only module (safe to commit).

Settings are read from KANBAN_* environment variables, optionally from a
local .env file (python-dotenv). See src/kanban_sync/config.py.
"""

ENV_VARS = {
    # App / logging
    "KANBAN_APP_NAME": "App display name (default: kanban-sync).",
    "KANBAN_LOG_LEVEL": "Console logging level (default: INFO). The log file always gets DEBUG.",
    # Paths (gitignored)
    "KANBAN_DATA_DIR": "Local data directory (default: .local/kanban).",
    "KANBAN_SNAPSHOT_DB_PATH": "Last-known snapshot SQLite path (default: <data_dir>/snapshots.sqlite3).",
    "KANBAN_EXPORT_DIR": "Where /export writes CSV files (default: <data_dir>/exports).",
    # Remote store
    "KANBAN_COLLECTION": "Task collection name (default: tasks).",
    "KANBAN_CACHE_FRESHNESS_SECONDS": "Cached list reused on re-subscribe while younger than this (default: 30).",
    # Reminders
    "KANBAN_DUE_REMINDER_MINUTES": "Minutes before due for the due-soon reminder (default: 10).",
    "KANBAN_DAILY_REMINDERS": "Schedule a reminder every 24h until due (true/false, default: true).",
    "KANBAN_COUNTDOWN_INTERVAL_SECONDS": "Tick cadence for /countdown (default: 1.0).",
    # Organization
    "KANBAN_AREAS": "Comma separated area names (default: Jurídica, Obras, Tesorería, Administración, Recursos Humanos).",
    # Default console session
    "KANBAN_SESSION_ROLE": "admin | jefe | operativo (default: admin).",
    "KANBAN_SESSION_EMAIL": "Session e-mail (default: admin@example.com).",
    "KANBAN_SESSION_DEPARTMENT": "Area of a jefe session (default: empty).",
}
