"""Data models for the alerter module."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from whale_observer.detector.models import WhaleEvent


class AlertPriority(str, Enum):
    """Backlog priority. Critical alerts are the last to be shed."""

    NORMAL = "normal"
    CRITICAL = "critical"


@dataclass
class AlertMessage:
    """A formatted whale alert awaiting delivery.

    Attributes:
        text: Channel-ready message body (Telegram MarkdownV2).
        plain_text: Unescaped fallback used for logging.
        tx_hash: Transaction the alert refers to.
        priority: Backlog priority.
        deadline: Monotonic time after which the alert is stale.
        enqueued_at: Monotonic time the alert entered the backlog.
        attempts: Delivery attempts made so far.
        event: The detection this alert was built from.
    """

    text: str
    plain_text: str
    tx_hash: str
    priority: AlertPriority = AlertPriority.NORMAL
    deadline: float | None = None
    enqueued_at: float | None = None
    attempts: int = 0
    links: dict[str, str] = field(default_factory=dict)
    event: WhaleEvent | None = None

    @property
    def is_critical(self) -> bool:
        return self.priority is AlertPriority.CRITICAL

    def is_expired(self, now: float) -> bool:
        return self.deadline is not None and now > self.deadline
