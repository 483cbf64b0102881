"""Domain events emitted by backup and restore operations."""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List

from .models import utcnow

logger = logging.getLogger(__name__)

BACKUP_COMPLETED = "backup.completed"
BACKUP_FAILED = "backup.failed"
RESTORE_STAGED = "restore.staged"
RESTORE_EXECUTING = "restore.executing"
RESTORE_COMPLETED = "restore.completed"
RESTORE_FAILED = "restore.failed"
RESTORE_EXPIRED = "restore.expired"


@dataclass
class BackupEvent:
    """Something observers (UI, health checks) may want to know about."""

    name: str
    payload: Dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=utcnow)


class EventBus:
    """Fans events out to registered observers.

    A failing observer is logged and skipped; it never affects the
    operation that emitted the event.
    """

    def __init__(self):
        self._observers: List[Callable[[BackupEvent], None]] = []

    def subscribe(self, observer: Callable[[BackupEvent], None]) -> None:
        self._observers.append(observer)

    def unsubscribe(self, observer: Callable[[BackupEvent], None]) -> None:
        if observer in self._observers:
            self._observers.remove(observer)

    def emit(self, name: str, **payload: Any) -> BackupEvent:
        event = BackupEvent(name=name, payload=payload)
        for observer in list(self._observers):
            try:
                observer(event)
            except Exception as e:
                logger.warning(f"Event observer failed for {name}: {e}")
        return event
