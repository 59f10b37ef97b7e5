"""
Log import service for JSON and CSV exports of access events.
"""
import logging
import os
from pathlib import Path
from typing import Any, Dict, List

import pandas as pd
from sqlalchemy.orm import Session

from app.clustering.models import AccessEvent
from app.services.centroid_service import CentroidService
from app.services.config_service import config_service

logger = logging.getLogger("app.import")

COLUMN_ALIASES = {
    "userId": "studentId",
    "student_id": "studentId",
    "module_id": "moduleId",
    "timecreated": "time",
}
REQUIRED_COLUMNS = ["studentId", "moduleId", "time"]


class LogImportService:
    """Service for importing exported access logs."""

    def __init__(self, upload_dir: str = "uploads"):
        self.upload_dir = Path(upload_dir)
        self.upload_dir.mkdir(exist_ok=True)
        self.centroid_service = CentroidService()

    def read_events(self, file_path: str) -> List[AccessEvent]:
        """
        Read access events from a JSON or CSV file.

        Rows with a missing or non-numeric module or time are dropped. Events
        come back sorted by student, then time.

        Args:
            file_path: Path to a .json or .csv file

        Returns:
            List of access events
        """
        if file_path.endswith(".json"):
            df = pd.read_json(file_path, orient="records", dtype=False)
        elif file_path.endswith(".csv"):
            df = pd.read_csv(file_path, dtype={"studentId": str, "userId": str})
        else:
            raise ValueError(f"Unsupported log file type: {file_path}")

        df = df.rename(columns=COLUMN_ALIASES)
        missing = [column for column in REQUIRED_COLUMNS if column not in df.columns]
        if missing:
            raise ValueError(f"Log file is missing columns: {missing}")

        total = len(df)
        df = df[REQUIRED_COLUMNS].copy()
        df["moduleId"] = pd.to_numeric(df["moduleId"], errors="coerce")
        df["time"] = pd.to_numeric(df["time"], errors="coerce")
        df = df.dropna()
        df = df[df["studentId"].astype(str).str.strip() != ""]

        if len(df) < total:
            logger.warning(f"Dropped {total - len(df)} malformed rows from {file_path}")

        df["studentId"] = df["studentId"].astype(str)
        df = df.sort_values(["studentId", "time"], kind="stable")

        return [
            AccessEvent(student_id=row.studentId, module_id=int(row.moduleId), time=int(row.time))
            for row in df.itertuples(index=False)
        ]

    def import_file(self, course_id: int, file_path: str, db: Session) -> Dict[str, Any]:
        """
        Import an exported log file into a course.

        The course's last sync time is left untouched so scheduled updates keep
        working from where they were.

        Returns:
            Dictionary with import summary
        """
        logger.info(f"Starting log import for course {course_id} from {file_path}")
        events = self.read_events(file_path)
        result = self.centroid_service.update_course(course_id, db, events, imported=True)
        result["rows_imported"] = len(events)

        logger.info(f"Log import completed for course {course_id}: {len(events)} events")
        return result

    def save_uploaded_file(self, file_content: bytes, filename: str) -> str:
        """
        Save uploaded file to disk.

        Args:
            file_content: File content as bytes
            filename: Original filename

        Returns:
            Path to saved file
        """
        timestamp = config_service.now().strftime("%Y%m%d_%H%M%S")
        safe_filename = "".join(c for c in filename if c.isalnum() or c in "._-")
        file_path = self.upload_dir / f"{timestamp}_{safe_filename}"

        with open(file_path, "wb") as f:
            f.write(file_content)

        logger.info(f"File saved: {file_path}")
        return str(file_path)

    def cleanup_file(self, file_path: str):
        try:
            if os.path.exists(file_path):
                os.remove(file_path)
                logger.info(f"File cleaned up: {file_path}")
        except OSError as e:
            logger.error(f"Failed to cleanup file {file_path}: {e}")
