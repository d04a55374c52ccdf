# chapter_portal/utils/logger.py
# File loggers: access (requests and lifecycle), error (tracebacks) and
# audit (who changed which records). The audit logger also feeds an
# in-memory trail of recent entries for the admin dashboard.

import collections
import csv
import io
import logging
import traceback
import os
from datetime import datetime, timezone

from chapter_portal import config

os.makedirs(config.LOGS_PATH, exist_ok=True)

FILE_LOGGERS = {
    "access": (os.path.join(config.LOGS_PATH, "access.log"), logging.INFO),
    "error": (os.path.join(config.LOGS_PATH, "error.log"), logging.ERROR),
    "audit": (os.path.join(config.LOGS_PATH, "audit.log"), logging.INFO),
}

AUDIT_TRAIL_SIZE = 500

formatter = logging.Formatter("%(asctime)s [%(levelname)s] %(message)s", "%Y-%m-%d %H:%M:%S")


def setup_logger(name, log_file, level):
    """Logger writing to its own file only."""
    logger = logging.getLogger(name)
    logger.setLevel(level)
    logger.propagate = False

    # Reloads import this module again; keep a single handler
    if not logger.handlers:
        handler = logging.FileHandler(log_file, encoding="utf-8")
        handler.setFormatter(formatter)
        logger.addHandler(handler)

    return logger


class AuditTrail(logging.Handler):
    """Most recent audit entries, oldest first, capped at ``capacity``."""

    def __init__(self, capacity: int = AUDIT_TRAIL_SIZE):
        super().__init__(level=logging.INFO)
        self._entries = collections.deque(maxlen=capacity)

    def emit(self, record: logging.LogRecord) -> None:
        self._entries.append({
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "action": getattr(record, "audit_action", ""),
            "email": getattr(record, "audit_actor", ""),
            "details": getattr(record, "audit_details", record.getMessage()),
        })

    def entries(self):
        return list(self._entries)

    def clear(self) -> None:
        self._entries.clear()

    def to_csv(self) -> str:
        buf = io.StringIO()
        writer = csv.writer(buf, quoting=csv.QUOTE_ALL, lineterminator="\n")
        writer.writerow(["Timestamp", "Action", "Email", "Details"])
        for entry in self.entries():
            writer.writerow([entry["timestamp"], entry["action"], entry["email"], entry["details"]])
        return buf.getvalue()


def _attach_audit_trail(logger):
    for handler in logger.handlers:
        if handler.get_name() == "audit_trail":
            return handler
    trail = AuditTrail()
    trail.set_name("audit_trail")
    logger.addHandler(trail)
    return trail


access_logger = setup_logger("access", *FILE_LOGGERS["access"])
error_logger = setup_logger("error", *FILE_LOGGERS["error"])
audit_logger = setup_logger("audit", *FILE_LOGGERS["audit"])
audit_trail = _attach_audit_trail(audit_logger)


def log_info(message):
    access_logger.info(message)


def log_exception(e: Exception, context: str = ""):
    error_logger.error(f"Exception in {context}: {type(e).__name__}: {e}\n{traceback.format_exc()}")


def log_audit(actor: str, action: str, target: str = "", **fields):
    """
    One line per record change, e.g.
    ``alice@example.org roster.delete bob@example.org removed=1``.
    """
    actor = actor or "system"
    extra = " ".join(f"{k}={v}" for k, v in sorted(fields.items()))
    details = " ".join(part for part in (target, extra) if part)
    audit_logger.info(
        " ".join(part for part in (actor, action, details) if part),
        extra={"audit_actor": actor, "audit_action": action, "audit_details": details},
    )
