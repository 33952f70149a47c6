"""
Backup service for the procurement database.
Creates and rotates ZIP archives containing the database, settings and master-data CSVs.
"""
import logging
import os
import sqlite3
import zipfile
from datetime import datetime
from pathlib import Path
from typing import Any, Optional

from config import PROJECT_ROOT

logger = logging.getLogger(__name__)

BACKUP_PREFIX = "procurement_backup_"


class BackupService:
    """
    Manages on-demand backups and rotation.
    """

    def __init__(self, config: Any) -> None:
        self.config = config
        self.backup_dir = Path(config.backup_dir)
        self.backup_dir.mkdir(parents=True, exist_ok=True)

    def create_backup(self) -> str:
        """
        Create a new timestamped ZIP backup. Returns the filename.
        """
        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S_%f")
        zip_name = f"{BACKUP_PREFIX}{timestamp}.zip"
        zip_path = self.backup_dir / zip_name

        logger.info("Starting backup: %s", zip_name)

        try:
            with zipfile.ZipFile(zip_path, "w", zipfile.ZIP_DEFLATED) as zipf:
                # 1. Database (online backup API, safe while writers are active)
                db_path = Path(self.config.db_path)
                if db_path.exists():
                    temp_db = self.backup_dir / f"temp_{timestamp}.db"
                    try:
                        src_conn = sqlite3.connect(db_path)
                        dst_conn = sqlite3.connect(temp_db)
                        try:
                            src_conn.backup(dst_conn)
                        finally:
                            src_conn.close()
                            dst_conn.close()
                        zipf.write(temp_db, arcname=f"output/{db_path.name}")
                    finally:
                        if temp_db.exists():
                            temp_db.unlink()

                # 2. Settings
                config_dir = Path(os.getenv("CONFIG_DIR", str(PROJECT_ROOT / "config")))
                if config_dir.exists():
                    for f in config_dir.glob("*.json"):
                        zipf.write(f, arcname=f"config/{f.name}")

                # 3. Master data
                for csv_path in (self.config.suppliers_csv, self.config.products_csv, self.config.stores_csv):
                    csv_path = Path(csv_path)
                    if csv_path.exists():
                        zipf.write(csv_path, arcname=f"data/{csv_path.name}")

            logger.info("Backup completed successfully: %s", zip_name)
            self.rotate_backups()
            return zip_name

        except (OSError, sqlite3.Error, zipfile.BadZipFile) as e:
            logger.error("Backup failed: %s", e)
            if zip_path.exists():
                zip_path.unlink()
            raise

    def list_backups(self) -> list[Path]:
        """Backups newest first."""
        return sorted(
            self.backup_dir.glob(f"{BACKUP_PREFIX}*.zip"),
            key=lambda p: p.name,
            reverse=True,
        )

    def rotate_backups(self) -> None:
        """
        Remove old backups, keeping only the last N files.
        """
        retention = self.config.backup_retention_count
        if retention <= 0:
            return

        for old_zip in self.list_backups()[retention:]:
            logger.info("Rotating out old backup: %s", old_zip.name)
            try:
                old_zip.unlink()
            except OSError as e:
                logger.warning("Failed to delete old backup %s: %s", old_zip, e)

    def get_last_backup_time(self) -> Optional[datetime]:
        """Return the timestamp of the newest backup file."""
        backups = self.list_backups()
        if not backups:
            return None
        return datetime.fromtimestamp(backups[0].stat().st_mtime)
