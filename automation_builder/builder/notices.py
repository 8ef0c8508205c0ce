"""User-facing notices raised by editor operations."""
from enum import Enum
from typing import Optional

import structlog
from pydantic import BaseModel

logger = structlog.get_logger()


class NoticeLevel(str, Enum):
    SUCCESS = "success"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


class Notice(BaseModel):
    """A non-blocking message shown to the user."""

    level: NoticeLevel
    message: str
    operation: Optional[str] = None


class Notifier:
    """Collects notices and bounce signals for the presentation layer.

    Each notice is also logged, so headless sessions keep a trace of what the
    user would have seen.
    """

    def __init__(self):
        self.notices: list[Notice] = []
        self.bounces: list[str] = []

    def notify(self, level: NoticeLevel, message: str, operation: Optional[str] = None) -> Notice:
        notice = Notice(level=level, message=message, operation=operation)
        self.notices.append(notice)
        log = logger.warning if level in (NoticeLevel.WARNING, NoticeLevel.ERROR) else logger.info
        log("notice", level=level.value, message=message, operation=operation)
        return notice

    def success(self, message: str, operation: Optional[str] = None) -> Notice:
        return self.notify(NoticeLevel.SUCCESS, message, operation)

    def warning(self, message: str, operation: Optional[str] = None) -> Notice:
        return self.notify(NoticeLevel.WARNING, message, operation)

    def error(self, message: str, operation: Optional[str] = None) -> Notice:
        return self.notify(NoticeLevel.ERROR, message, operation)

    def bounce(self, target: str) -> None:
        """Ask the presentation layer to draw attention to ``target``."""
        self.bounces.append(target)
        logger.info("bounce", target=target)

    def drain(self) -> list[Notice]:
        """Return pending notices and forget them."""
        notices, self.notices = self.notices, []
        return notices
