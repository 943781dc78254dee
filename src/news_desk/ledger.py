"""Cost estimation for billable model calls and the session-wide running total."""

from __future__ import annotations

from dataclasses import dataclass
from threading import Lock
from typing import Any, Optional

from .config import Settings, get_settings


@dataclass(frozen=True)
class Usage:
    input_tokens: int = 0
    output_tokens: int = 0


@dataclass(frozen=True)
class PriceTable:
    input_per_million: float
    output_per_million: float
    search_surcharge: float
    exchange_rate: float
    currency: str = "CHF"

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> "PriceTable":
        settings = settings or get_settings()
        return cls(
            input_per_million=settings.price_per_1m_input_tokens,
            output_per_million=settings.price_per_1m_output_tokens,
            search_surcharge=settings.price_per_search_call,
            exchange_rate=settings.exchange_rate,
            currency=settings.currency,
        )


def _read(source: Any, *names: str) -> int:
    for name in names:
        value = source.get(name) if isinstance(source, dict) else getattr(source, name, None)
        if isinstance(value, (int, float)):
            return int(value)
    return 0


def usage_from_response(response: Any) -> Optional[Usage]:
    """
    Pull token counters from an SDK response (or a plain dict).

    Accepts Responses/Images style (`input_tokens`/`output_tokens`) and Chat style
    (`prompt_tokens`/`completion_tokens`). Returns None when no usage is attached.
    """
    usage = response.get("usage") if isinstance(response, dict) else getattr(response, "usage", None)
    if usage is None:
        return None
    return Usage(
        input_tokens=_read(usage, "input_tokens", "prompt_tokens"),
        output_tokens=_read(usage, "output_tokens", "completion_tokens"),
    )


def estimate_cost(
    usage: Optional[Usage],
    *,
    search_used: bool = False,
    prices: PriceTable | None = None,
) -> float:
    """Convert usage (plus an optional search surcharge) into display-currency cost."""
    if usage is None:
        return 0.0
    prices = prices or PriceTable.from_settings()
    input_cost = (usage.input_tokens / 1_000_000) * prices.input_per_million
    output_cost = (usage.output_tokens / 1_000_000) * prices.output_per_million
    search_cost = prices.search_surcharge if search_used else 0.0
    return (input_cost + output_cost + search_cost) * prices.exchange_rate


class CostLedger:
    """Running, monotonically increasing cost total for one dashboard session."""

    def __init__(self) -> None:
        self._total = 0.0
        self._calls = 0
        self._lock = Lock()

    @property
    def total(self) -> float:
        with self._lock:
            return self._total

    @property
    def calls(self) -> int:
        with self._lock:
            return self._calls

    def accumulate(self, amount: float) -> float:
        """Add a non-negative amount and return the new total."""
        if amount < 0:
            raise ValueError("Cost increments must be non-negative.")
        with self._lock:
            self._total += amount
            self._calls += 1
            return self._total

    def reset(self) -> None:
        """Zero the ledger; only called at an explicit session boundary."""
        with self._lock:
            self._total = 0.0
            self._calls = 0
