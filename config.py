"""
Central configuration for the procurement service.

All paths, retry settings and thresholds are defined here.
Override via environment variables or by passing a Config instance directly.

Settings priority (highest wins):
  1. Environment variables
  2. config/procurement_settings.json  (admin-editable, persisted)
  3. Hardcoded defaults in this file
"""
import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable

logger = logging.getLogger(__name__)

# Project root (directory containing this file)
PROJECT_ROOT = Path(__file__).parent

# Default data locations (relative to project root)
DEFAULT_DATA_DIR       = PROJECT_ROOT / "data"
DEFAULT_SUPPLIERS_CSV  = DEFAULT_DATA_DIR / "suppliers.csv"
DEFAULT_PRODUCTS_CSV   = DEFAULT_DATA_DIR / "products.csv"
DEFAULT_STORES_CSV     = DEFAULT_DATA_DIR / "stores.csv"
DEFAULT_OUTPUT_DIR     = PROJECT_ROOT / "output"
DEFAULT_DB_PATH        = DEFAULT_OUTPUT_DIR / "procurement.db"
DEFAULT_BACKUP_DIR     = PROJECT_ROOT / "backups"

# Settings file key -> environment variable that takes precedence over it
_ENV_NAMES = {
    "receive_max_retries":    "RECEIVE_MAX_RETRIES",
    "retry_backoff_seconds":  "RETRY_BACKOFF_SECONDS",
    "lock_timeout_seconds":   "LOCK_TIMEOUT_SECONDS",
    "low_stock_threshold":    "LOW_STOCK_THRESHOLD",
    "backup_enabled":         "BACKUP_ENABLED",
    "backup_retention_count": "BACKUP_RETENTION_COUNT",
}


def _as_bool(value: Any) -> bool:
    """Accept JSON booleans as well as strings such as "false" or "0"."""
    if isinstance(value, str):
        return value.strip().lower() not in ("false", "0", "no", "off", "")
    return bool(value)


@dataclass
class Config:
    # --- Master data (read-only CSV exports) ---
    suppliers_csv: Path = field(
        default_factory=lambda: Path(os.getenv("SUPPLIERS_CSV", str(DEFAULT_SUPPLIERS_CSV)))
    )
    products_csv:  Path = field(
        default_factory=lambda: Path(os.getenv("PRODUCTS_CSV", str(DEFAULT_PRODUCTS_CSV)))
    )
    stores_csv:    Path = field(
        default_factory=lambda: Path(os.getenv("STORES_CSV", str(DEFAULT_STORES_CSV)))
    )

    # --- Storage ---
    output_dir: Path = field(
        default_factory=lambda: Path(os.getenv("OUTPUT_DIR", str(DEFAULT_OUTPUT_DIR)))
    )
    db_path:    Path = field(
        default_factory=lambda: Path(os.getenv("DB_PATH", str(DEFAULT_DB_PATH)))
    )

    # --- Write transactions ---
    # Attempts before a conflicting write surfaces as ConcurrencyError.
    receive_max_retries: int = field(
        default_factory=lambda: int(os.getenv("RECEIVE_MAX_RETRIES", "3"))
    )
    # Sleep before attempt n is n * retry_backoff_seconds.
    retry_backoff_seconds: float = field(
        default_factory=lambda: float(os.getenv("RETRY_BACKOFF_SECONDS", "0.05"))
    )
    # How long one attempt waits for another writer to release the database.
    lock_timeout_seconds: float = field(
        default_factory=lambda: float(os.getenv("LOCK_TIMEOUT_SECONDS", "30"))
    )

    # --- Reporting ---
    low_stock_threshold: int = field(
        default_factory=lambda: int(os.getenv("LOW_STOCK_THRESHOLD", "10"))
    )

    # --- Backup settings ---
    backup_enabled: bool = field(
        default_factory=lambda: _as_bool(os.getenv("BACKUP_ENABLED", "true"))
    )
    backup_dir: Path = field(
        default_factory=lambda: Path(os.getenv("BACKUP_DIR", str(DEFAULT_BACKUP_DIR)))
    )
    backup_retention_count: int = field(
        default_factory=lambda: int(os.getenv("BACKUP_RETENTION_COUNT", "7"))
    )

    def __post_init__(self) -> None:
        """Overlay runtime-tunable settings from procurement_settings.json if present."""
        config_dir = Path(os.getenv("CONFIG_DIR", str(PROJECT_ROOT / "config")))
        settings_file = config_dir / "procurement_settings.json"
        if not settings_file.exists():
            return
        _type_map: dict[str, Callable[[Any], Any]] = {
            "receive_max_retries":    int,
            "retry_backoff_seconds":  float,
            "lock_timeout_seconds":   float,
            "low_stock_threshold":    int,
            "backup_enabled":         _as_bool,
            "backup_retention_count": int,
        }
        try:
            with open(settings_file, encoding="utf-8") as f:
                overrides = {k: v for k, v in json.load(f).items() if not k.startswith("_")}
            for key, val in overrides.items():
                if key not in _type_map or not hasattr(self, key):
                    continue
                if os.getenv(_ENV_NAMES[key]) is not None:
                    continue
                setattr(self, key, _type_map[key](val))
        except (OSError, ValueError, TypeError) as exc:
            logger.warning("Failed to load procurement_settings.json: %s", exc)

    def ensure_output_dir(self) -> None:
        self.output_dir.mkdir(parents=True, exist_ok=True)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
