"""Configuration loading for the credit ledger rebuild tool.

Loads settings from .env file and environment variables with sensible defaults.
Validates required configuration and provides clear error messages.
"""

import json
import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

TRUE_VALUES = {"1", "true", "yes", "on"}


@dataclass
class ImportConfig:
    """Configuration for a legacy credit ledger import run."""

    export_path: str
    """Path to the legacy JSON export (required)"""

    database_url: str = "sqlite:///./condo_ledger.db"
    """SQLAlchemy database URL (default: local SQLite)"""

    log_file: str = "logs/rebuild_credit.log"
    """Path to log file (default: logs/rebuild_credit.log)"""

    dry_run: bool = False
    """Report what would be imported without writing anything"""

    source_label: str = "import"
    """Value stored in the source column of imported entries"""


def load_import_config() -> ImportConfig:
    """
    Load configuration from .env file and environment variables.

    Priority (highest to lowest):
    1. Environment variables (CREDIT_EXPORT_PATH, DATABASE_URL, DRY_RUN, etc.)
    2. .env file in project root
    3. Default values

    Returns:
        ImportConfig with all required settings

    Raises:
        ValueError: If required configuration is missing or invalid

    Example:
        Create .env file:
        ```
        CREDIT_EXPORT_PATH=exports/credit_balances.json
        DRY_RUN=true
        ```

        Then call:
        ```
        config = load_import_config()
        ```
    """
    env_path = Path(".env")
    if env_path.exists():
        load_dotenv(env_path)

    export_path = os.getenv("CREDIT_EXPORT_PATH")
    database_url = os.getenv("DATABASE_URL", "sqlite:///./condo_ledger.db")
    log_file = os.getenv("LOG_FILE", "logs/rebuild_credit.log")
    dry_run = os.getenv("DRY_RUN", "false").strip().lower() in TRUE_VALUES
    source_label = os.getenv("IMPORT_SOURCE_LABEL", "import").strip() or "import"

    if not export_path:
        raise ValueError(
            "CREDIT_EXPORT_PATH not configured. "
            "Set CREDIT_EXPORT_PATH environment variable or in .env file"
        )

    export_file = Path(export_path)
    if not export_file.exists():
        raise ValueError(f"Export file not found: {export_path}.")

    try:
        with open(export_file, "r", encoding="utf-8") as f:
            export_data = json.load(f)
    except json.JSONDecodeError as e:
        raise ValueError(
            f"Export file is not valid JSON: {export_path}. "
            f"Error: {str(e)}"
        ) from e
    except OSError as e:
        raise ValueError(
            f"Cannot read export file: {export_path}. "
            f"Error: {str(e)}"
        ) from e

    missing_fields = {"clientId", "units"} - set(export_data.keys() if isinstance(export_data, dict) else [])
    if missing_fields:
        raise ValueError(
            f"Export file missing required fields: {', '.join(sorted(missing_fields))}. "
            f"Expected {{\"clientId\": ..., \"units\": {{...}}}}."
        )

    return ImportConfig(
        export_path=export_path,
        database_url=database_url,
        log_file=log_file,
        dry_run=dry_run,
        source_label=source_label,
    )
