"""
Configuration constants for Prompt Forge.

This module contains global constants used across the application
to avoid tight coupling between modules.
"""

# Prompt titles are the first line of content, cut to this many characters
TITLE_MAX_LENGTH = 50
TITLE_ELLIPSIS = "..."

DEFAULT_HISTORY_LIMIT = 10

DEFAULT_DB_PATH = "./data/prompt_forge.db"

# Name of the JSON file listing migration unit filenames
MIGRATION_INDEX_FILENAME = "index.json"

# Seconds a writer waits on SQLite's lock before giving up
DEFAULT_BUSY_TIMEOUT_SECONDS = 5.0
