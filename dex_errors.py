"""Error kinds raised by the Proton DEX grid bot."""

from __future__ import annotations

from decimal import Decimal
from typing import Any, Sequence


class DexBotError(Exception):
    """Base class for bot errors that are handled per pair."""


class ConfigurationError(DexBotError, ValueError):
    def __init__(self, problems: list[str]):
        self.problems = list(problems)
        super().__init__("Invalid bot configuration:\n  " + "\n  ".join(self.problems))


class MarketNotFound(DexBotError, LookupError):
    def __init__(self, symbol: str):
        self.symbol = symbol
        super().__init__(f"Market {symbol} does not exist")


class PrecisionError(DexBotError, ArithmeticError):
    pass


class DexApiError(DexBotError):
    pass


class SubmissionFailure(DexBotError):
    """A batch was rejected. ``completed`` holds the items of earlier batches that did go through."""

    def __init__(self, message: str, completed: Sequence[Any] = ()):
        super().__init__(message)
        self.completed = tuple(completed)


class InsufficientBalance(DexBotError):
    def __init__(
        self,
        symbol: str,
        required_base: Decimal,
        available_base: Decimal,
        required_quote: Decimal,
        available_quote: Decimal,
        base_code: str = "",
        quote_code: str = "",
    ):
        self.symbol = symbol
        self.required_base = required_base
        self.available_base = available_base
        self.required_quote = required_quote
        self.available_quote = available_quote
        super().__init__(
            f"LOW BALANCES on {symbol} - "
            f"current {available_base} {base_code}, expected {required_base} {base_code}; "
            f"current {available_quote} {quote_code}, expected {required_quote} {quote_code}"
        )
