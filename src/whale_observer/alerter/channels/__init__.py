"""Alert delivery channels."""

from whale_observer.alerter.channels.telegram import ChannelError, TelegramChannel

__all__ = ["ChannelError", "TelegramChannel"]
