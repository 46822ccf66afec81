"""Runtime configuration for the family archive core.

Values come from the environment, optionally seeded from a ``.env`` file.
"""

import logging
import os

from dotenv import load_dotenv

# Load environment variables
load_dotenv()

# Generations walked from the root person when building an imported graph
DEFAULT_DEPTH_BOUND = int(os.getenv("FAMILY_ARCHIVE_DEPTH_BOUND", "4"))

LOG_LEVEL = os.getenv("FAMILY_ARCHIVE_LOG_LEVEL", "INFO")

# Directory used by the file-backed key/value store
STORE_DIR = os.getenv("FAMILY_ARCHIVE_STORE_DIR", ".archive")

STORAGE_KEYS = {
    "profiles": "family_archive_profiles",
    "family_trees": "family_archive_trees",
    "circles": "family_archive_circles",
}

# Author stamped on generated feed entries
SYSTEM_AUTHOR_ID = "system"
SYSTEM_AUTHOR_NAME = "Family Archive"


def configure_logging(level: str | None = None) -> None:
    """Configure root logging the same way for every entry point."""
    logging.basicConfig(
        level=(level or LOG_LEVEL).upper(),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
