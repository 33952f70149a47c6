"""
CSV loading utilities for master data.

Caches file metadata (mtime, size, row count) per file so repeated setup
checks do not re-read a CSV that has not changed.
"""
import csv
import logging
from datetime import datetime, timezone
from pathlib import Path

logger = logging.getLogger(__name__)


class CSVManager:
    """Reads CSV master-data files and tracks their metadata."""

    def __init__(self):
        self._meta_cache: dict[str, dict] = {}

    def get_metadata(self, path: Path) -> dict:
        """
        Get metadata for a CSV file (with caching).

        Returns:
            dict with keys: exists, mtime, mtime_iso, size, rows
        """
        if not path.exists():
            return {"exists": False, "mtime": None, "size": 0, "rows": 0}

        stat = path.stat()
        mtime = stat.st_mtime

        cached = self._meta_cache.get(str(path))
        if cached and cached.get("mtime") == mtime:
            return cached

        rows = 0
        with open(path, newline="", encoding="utf-8") as f:
            reader = csv.reader(f)
            if next(reader, None) is not None:
                rows = sum(1 for _ in reader)

        meta = {
            "exists": True,
            "mtime": mtime,
            "mtime_iso": datetime.fromtimestamp(mtime, tz=timezone.utc).isoformat(),
            "size": stat.st_size,
            "rows": rows,
        }
        self._meta_cache[str(path)] = meta
        return meta

    def load_dicts(self, path: Path) -> list[dict]:
        """
        Load a CSV file as a list of dictionaries with stripped values.

        Returns an empty list if the file doesn't exist.
        """
        if not path.exists():
            logger.warning("CSV file not found: %s", path)
            return []

        with open(path, newline="", encoding="utf-8") as f:
            return [
                {k.strip(): (v or "").strip() for k, v in row.items() if k}
                for row in csv.DictReader(f)
            ]


# Global instance for shared use
csv_manager = CSVManager()
