"""Alerting layer - Formatting and rate-limited delivery of whale alerts."""

from whale_observer.alerter.channels import ChannelError, TelegramChannel
from whale_observer.alerter.dispatcher import (
    AlertChannel,
    DispatchState,
    DispatchStats,
    RateLimitedDispatcher,
)
from whale_observer.alerter.formatter import AlertFormatter, TokenInfo, escape_markdown_v2
from whale_observer.alerter.models import AlertMessage, AlertPriority

__all__ = [
    "AlertChannel",
    "AlertFormatter",
    "AlertMessage",
    "AlertPriority",
    "ChannelError",
    "DispatchState",
    "DispatchStats",
    "RateLimitedDispatcher",
    "TelegramChannel",
    "TokenInfo",
    "escape_markdown_v2",
]
