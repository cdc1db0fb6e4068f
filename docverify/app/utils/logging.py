import logging
import json
from datetime import datetime
from typing import Dict, Any
from pathlib import Path

from ..config import settings


class StructuredLogger:
    """Structured logger for the DocVerify API"""

    def __init__(self):
        self.logger = logging.getLogger("docverify")
        self.logger.setLevel(getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO))

        if not self.logger.handlers:
            self._configure_handlers()

    def _configure_handlers(self) -> None:
        """Configure logger handlers for console and file outputs."""
        formatter = logging.Formatter(
            '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
        )

        # Console handler
        console_handler = logging.StreamHandler()
        console_handler.setFormatter(formatter)
        self.logger.addHandler(console_handler)

        # File handlers
        log_file = Path(settings.LOG_FILE)
        if not log_file.is_absolute():
            log_file = Path(__file__).resolve().parents[3] / log_file
        log_file.parent.mkdir(parents=True, exist_ok=True)

        error_log_path = log_file.with_name(f"{log_file.stem}_error{log_file.suffix or '.log'}")

        info_handler = logging.FileHandler(log_file, encoding="utf-8")
        info_handler.setLevel(logging.INFO)
        info_handler.setFormatter(formatter)

        error_handler = logging.FileHandler(error_log_path, encoding="utf-8")
        error_handler.setLevel(logging.ERROR)
        error_handler.setFormatter(formatter)

        self.logger.addHandler(info_handler)
        self.logger.addHandler(error_handler)
        self.logger.propagate = False

    def log_step(self, step: str, data: Dict[str, Any] = None):
        """Log a processing step"""
        log_data = {
            "timestamp": datetime.utcnow().isoformat(),
            "step": step,
            "service": "docverify"
        }
        if data:
            log_data.update(data)

        self.logger.info(f"STEP: {json.dumps(log_data, default=str)}")

    def log_error(self, error_type: str, data: Dict[str, Any] = None):
        """Log an error"""
        log_data = {
            "timestamp": datetime.utcnow().isoformat(),
            "error": error_type,
            "service": "docverify"
        }
        if data:
            log_data.update(data)

        self.logger.error(f"ERROR: {json.dumps(log_data, default=str)}")

    def log_certificate_issued(self, certificate_id: str, issued_by: str, file_type: str):
        self.log_step("certificate_issued", {
            "certificate_id": certificate_id,
            "issued_by": issued_by,
            "file_type": file_type
        })

    def log_extraction(self, certificate_id: str, status: str, document_type: str = None):
        self.log_step("extraction_finished", {
            "certificate_id": certificate_id,
            "status": status,
            "document_type": document_type
        })

    def log_verification(self, certificate_id: str, status: str, full_access: bool):
        self.log_step("certificate_verified", {
            "certificate_id": certificate_id,
            "status": status,
            "full_access": full_access
        })

    def log_batch_issued(self, batch_id: str, document_count: int, merkle_root: str, anchor_status: str):
        self.log_step("batch_issued", {
            "batch_id": batch_id,
            "document_count": document_count,
            "merkle_root": merkle_root,
            "anchor_status": anchor_status
        })


# Global logger instance
logger = StructuredLogger()
