"""Alert message formatter.

This module turns WhaleEvents into human-readable alert messages. All
unit conversion happens here, after detection, using Decimal arithmetic
so no precision is lost on the detection path.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, localcontext

from whale_observer.alerter.models import AlertMessage
from whale_observer.detector.models import WhaleEvent

DEFAULT_EXPLORER_TX_URL = "https://etherscan.io/tx/{tx_hash}"

Q96 = 2**96

# Telegram MarkdownV2 reserved characters.
_MARKDOWN_V2_SPECIAL = "_*[]()~`>#+-=|{}.!\\"

EMOJI_BOUGHT = "🟢"
EMOJI_SOLD = "🔴"


@dataclass(frozen=True)
class TokenInfo:
    """Display metadata for one side of the pool."""

    symbol: str
    decimals: int
    display_places: int = 4


def truncate_address(address: str, chars: int = 4) -> str:
    """Truncate an Ethereum address to 0x1234...5678 format."""
    if len(address) < chars * 2 + 4:
        return address
    return f"{address[: chars + 2]}...{address[-chars:]}"


def scale_amount(units: int, decimals: int) -> Decimal:
    """Convert integer base units to a display-unit Decimal (exact)."""
    return Decimal(units).scaleb(-decimals)


def format_token_amount(units: int, token: TokenInfo) -> str:
    """Format an absolute token amount with thousands separators."""
    value = scale_amount(abs(units), token.decimals)
    return f"{value:,.{token.display_places}f}"


def sqrt_price_x96_to_price(sqrt_price_x96: int, token0: TokenInfo, token1: TokenInfo) -> Decimal | None:
    """Price of one token1 expressed in token0, from a Q64.96 sqrt price.

    Returns None for a zero price (uninitialized pool).
    """
    if sqrt_price_x96 <= 0:
        return None
    with localcontext() as ctx:
        ctx.prec = 60
        ratio = Decimal(Q96 * Q96) / (Decimal(sqrt_price_x96) * Decimal(sqrt_price_x96))
        return ratio.scaleb(token1.decimals - token0.decimals)


def escape_markdown_v2(text: str) -> str:
    """Escape special Telegram MarkdownV2 characters."""
    return "".join(f"\\{ch}" if ch in _MARKDOWN_V2_SPECIAL else ch for ch in text)


def _escape_link_url(url: str) -> str:
    # Inside (...) of an inline link only ')' and '\' must be escaped.
    return url.replace("\\", "\\\\").replace(")", "\\)")


class AlertFormatter:
    """Formats WhaleEvents into Telegram-ready alert messages.

    Headlines describe the trade from the trader's side with respect to
    token1: the pool paying out token1 means the trader BOUGHT it.
    """

    def __init__(
        self,
        token0: TokenInfo,
        token1: TokenInfo,
        *,
        explorer_tx_url: str = DEFAULT_EXPLORER_TX_URL,
    ) -> None:
        """Initialize the formatter.

        Args:
            token0: Display metadata for the pool's token0.
            token1: Display metadata for the pool's token1.
            explorer_tx_url: Block explorer URL template with a {tx_hash} field.
        """
        self.token0 = token0
        self.token1 = token1
        self.explorer_tx_url = explorer_tx_url

    def tx_url(self, tx_hash: str) -> str:
        return self.explorer_tx_url.format(tx_hash=tx_hash)

    def format(self, event: WhaleEvent) -> AlertMessage:
        """Format a whale event into an alert message.

        The output is a pure function of the event and formatter settings.
        """
        trade = event.trade
        action = event.direction
        emoji = EMOJI_BOUGHT if action == "BOUGHT" else EMOJI_SOLD

        amount1 = format_token_amount(trade.amount1, self.token1)
        amount0 = format_token_amount(trade.amount0, self.token0)
        price = sqrt_price_x96_to_price(trade.sqrt_price_x96, self.token0, self.token1)
        price_str = f"{price:,.2f}" if price is not None else None
        pair = f"{self.token0.symbol}/{self.token1.symbol}"
        links = {"transaction": self.tx_url(trade.tx_hash)}

        return AlertMessage(
            text=self._build_telegram_markdown(event, emoji, amount0, amount1, price_str, pair, links),
            plain_text=self._build_plain_text(event, amount0, amount1, price_str, pair, links),
            tx_hash=trade.tx_hash,
            links=links,
            event=event,
        )

    def _build_telegram_markdown(
        self,
        event: WhaleEvent,
        emoji: str,
        amount0: str,
        amount1: str,
        price: str | None,
        pair: str,
        links: dict[str, str],
    ) -> str:
        esc = escape_markdown_v2
        sym0 = esc(self.token0.symbol)
        sym1 = esc(self.token1.symbol)

        lines = [
            f"{emoji} *WHALE {event.direction} {sym1} \\!* {emoji}",
            "",
            f"💰 Amount: *{esc(amount1)} {sym1}*",
            f"💵 Value: *{esc(amount0)} {sym0}*",
        ]
        if price is not None:
            lines.append(f"📈 Price: {esc(price)} {esc(pair)}")
        lines.append(f"👤 Recipient: `{esc(truncate_address(event.trade.recipient))}`")
        lines.append("")
        lines.append(f"🔗 [View transaction]({_escape_link_url(links['transaction'])})")
        return "\n".join(lines)

    def _build_plain_text(
        self,
        event: WhaleEvent,
        amount0: str,
        amount1: str,
        price: str | None,
        pair: str,
        links: dict[str, str],
    ) -> str:
        lines = [
            f"WHALE {event.direction} {self.token1.symbol}",
            f"Amount: {amount1} {self.token1.symbol}",
            f"Value: {amount0} {self.token0.symbol}",
        ]
        if price is not None:
            lines.append(f"Price: {price} {pair}")
        lines.append(f"Recipient: {event.trade.recipient}")
        lines.append(f"Transaction: {links['transaction']}")
        return "\n".join(lines)
