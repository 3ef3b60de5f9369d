# config.example.py

"""
Documentation-only module (safe to commit).

The real configuration is loaded from environment variables (optionally via a
local .env file, gitignored). Nothing imports this file; it lists every
variable taskwatch reads so the repo documents itself.
"""

ENV_VARS = {
    # App / logging
    "TASKWATCH_APP_NAME": "App display name (default: taskwatch).",
    "TASKWATCH_LOG_LEVEL": "Console logging level (default: INFO). The log file always gets DEBUG.",
    "TASKWATCH_TIMEZONE": "IANA zone for deadlines, reminders and the daily report (default: Europe/Kyiv).",
    # Connectors
    "TASKWATCH_CONSOLE_ENABLED": "Enable the console REPL (true/false, default: true).",
    "TASKWATCH_MATRIX_ENABLED": "Enable the Matrix connector (true/false, default: false).",
    # Matrix
    "TASKWATCH_MATRIX_HOMESERVER": "Matrix homeserver URL.",
    "TASKWATCH_MATRIX_USER_ID": "Matrix user ID of the bot.",
    "TASKWATCH_MATRIX_PASSWORD": "Password for the first login (the session is stored locally).",
    "TASKWATCH_MATRIX_ROOMS": "Optional allowlist of group room IDs (empty => all rooms). DMs always pass.",
    # Paths (gitignored)
    "TASKWATCH_DATA_DIR": "Local data directory (default: .local/taskwatch).",
    "TASKWATCH_MATRIX_STORE_PATH": "Matrix session/encryption store (default: <data_dir>/matrix_store).",
    "TASKWATCH_TASKS_PATH": "Task snapshot JSON (default: <data_dir>/tasks.json).",
    "TASKWATCH_IDENTITIES_PATH": "Handle -> private address map (default: <data_dir>/identities.json).",
    # Scheduling
    "TASKWATCH_REMINDER_INTERVAL_SECONDS": "Reminder / daily report polling interval (default: 60).",
    "TASKWATCH_CATCH_UP_MINUTES": "How late a custom reminder or the daily report may still fire (default: 60).",
    "TASKWATCH_DEFAULT_DEADLINE_TIME": "Deadline used when a task gives none, HH:MM today (default: 18:00).",
    "TASKWATCH_DAILY_REPORT_TIME": "Local time of the daily report, HH:MM (default: 18:00).",
    # Delivery
    "TASKWATCH_RATE_LIMIT_MAX_RETRIES": "Resends to one target after rate limiting (default: 5).",
    "TASKWATCH_RATE_LIMIT_DEFAULT_RETRY_SECONDS": "Backoff when the server gives no retry hint (default: 5).",
}
