"""
Audit Logger

DESIGN DECISION: Every change the engine makes to the ledger is logged.
This provides:
1. Complete traceability of which file was rewritten and why
2. Debugging capability for conflicts and failed writes
3. A record of the narrow window in which a moved transaction
   exists in two monthly files

The audit logger:
- Is synchronous; it is called from worker threads after a write
- Gracefully handles failures (a broken audit sink never fails a
  ledger operation that already succeeded)
"""

import logging
import threading
from typing import Optional

import structlog

from beanledger.config import LoggingSettings
from beanledger.models.audit import AuditEvent, AuditEventBuilder, AuditSeverity
from beanledger.services.storage import AuditStorageInterface


# Processors shared by every renderer
SHARED_PROCESSORS = [
    structlog.stdlib.filter_by_level,
    structlog.stdlib.add_logger_name,
    structlog.stdlib.add_log_level,
    structlog.stdlib.PositionalArgumentsFormatter(),
    structlog.processors.TimeStamper(fmt="iso"),
    structlog.processors.StackInfoRenderer(),
    structlog.processors.format_exc_info,
    structlog.processors.UnicodeDecoder(),
]


def _configure_structlog(renderer) -> None:
    structlog.configure(
        processors=[*SHARED_PROCESSORS, renderer],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=False,
    )


# Configure structlog for local logging
_configure_structlog(structlog.processors.JSONRenderer())


def configure_logging(settings: LoggingSettings) -> None:
    """
    Apply log level and renderer from settings.

    JSON lines by default; key=value console output otherwise.
    """
    renderer = (
        structlog.processors.JSONRenderer()
        if settings.json_output
        else structlog.dev.ConsoleRenderer(colors=False)
    )
    logging.basicConfig(format="%(message)s", level=settings.level)
    logging.getLogger("beanledger").setLevel(settings.level)
    _configure_structlog(renderer)


class InMemoryAuditStorage(AuditStorageInterface):
    """
    Audit sink that keeps events in a list.

    Useful for tests and for callers that want to show recent activity.
    """

    def __init__(self):
        self._events: list[AuditEvent] = []
        self._lock = threading.Lock()

    def append_event(self, event: AuditEvent) -> bool:
        with self._lock:
            self._events.append(event)
        return True

    def get_events_by_entity(self, entity_type: str, entity_id: str) -> list[AuditEvent]:
        with self._lock:
            return [
                e for e in self._events
                if e.entity_type == entity_type and e.entity_id == entity_id
            ]

    def get_recent_events(self, limit: int = 100) -> list[AuditEvent]:
        with self._lock:
            return list(reversed(self._events[-limit:])) if limit > 0 else []

    @property
    def events(self) -> list[AuditEvent]:
        with self._lock:
            return list(self._events)


class AuditLogger:
    """
    Central audit logging service.

    Logs events both to:
    1. Structured local log (for debugging)
    2. An optional audit storage backend
    """

    def __init__(
        self,
        storage: Optional[AuditStorageInterface] = None,
    ):
        """
        Initialize audit logger.

        Args:
            storage: Storage backend for persistence.
                    If None, only logs locally.
        """
        self._storage = storage
        self._logger = structlog.get_logger("beanledger.audit")

    @property
    def storage(self) -> Optional[AuditStorageInterface]:
        return self._storage

    def log(self, event: AuditEvent) -> bool:
        """
        Log an audit event.

        Always logs locally. Persists to storage if available.

        Returns True if storage write succeeded (or no storage configured).
        """
        # Always log locally
        log_dict = event.to_log_dict()

        if event.severity == AuditSeverity.ERROR:
            self._logger.error("audit_event", **log_dict)
        elif event.severity == AuditSeverity.WARNING:
            self._logger.warning("audit_event", **log_dict)
        elif event.severity == AuditSeverity.DEBUG:
            self._logger.debug("audit_event", **log_dict)
        else:
            self._logger.info("audit_event", **log_dict)

        # Persist to storage if available
        if self._storage:
            try:
                return self._storage.append_event(event)
            except Exception as e:
                # Log failure but don't raise
                self._logger.error(
                    "audit_storage_failed",
                    error=str(e),
                    event_id=str(event.event_id),
                )
                return False

        return True

    def log_file_created(self, file: str) -> None:
        self.log(AuditEventBuilder.file_created(file))

    def log_file_removed(self, file: str) -> None:
        self.log(AuditEventBuilder.file_removed(file))

    def log_include_changed(self, main_file: str, target: str, added: bool) -> None:
        self.log(AuditEventBuilder.include_changed(main_file, target, added))

    def log_write_conflict(self, file: str, error_message: str) -> None:
        """Log a write that lost a race against an outside edit."""
        self.log(AuditEventBuilder.write_conflict(file, error_message))

    def log_write_failed(self, file: str, error_message: str) -> None:
        self.log(AuditEventBuilder.write_failed(file, error_message))
