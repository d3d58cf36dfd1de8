"""
Mock DEX Router - simulated multi-venue swap routing.

Quotes two venues around a base price and picks the cheaper one, then
"executes" by drifting the realized price away from the quote. A drift
beyond the slippage tolerance is reported as a SLIPPAGE fault.

Randomness comes from an injectable random.Random so tests are
deterministic; latency is simulated with asyncio.sleep.
"""

from __future__ import annotations

import asyncio
import logging
import random

from order_engine.core.config import RouterConfig
from order_engine.core.types import ExecutionResult, Quote
from order_engine.execution.base import DexRouter, RouterError

logger = logging.getLogger(__name__)

VENUES = ("Raydium", "Meteora")


class MockDexRouter(DexRouter):
    """Simulated DEX aggregator."""

    def __init__(self, config: RouterConfig | None = None, rng: random.Random | None = None):
        self._config = config or RouterConfig()
        self._rng = rng or random.Random()

    @property
    def name(self) -> str:
        return "mock_dex_router"

    def _maybe_fail_transient(self, operation: str) -> None:
        rate = self._config.transient_failure_rate
        if rate > 0 and self._rng.random() < rate:
            raise RouterError.transient(f"RPC node unavailable during {operation}")

    async def get_quote(self, amount: float) -> Quote:
        if amount <= 0:
            raise RouterError.rejected(f"Invalid amount {amount}")

        await asyncio.sleep(self._config.quote_latency_sec)
        self._maybe_fail_transient("quote")

        cfg = self._config
        prices = {
            venue: round(cfg.base_price * (1 + self._rng.uniform(-cfg.venue_spread, cfg.venue_spread)), 6)
            for venue in VENUES
        }
        provider = min(prices, key=prices.get)
        logger.debug(f"[ROUTER] Quotes for {amount}: {prices} -> {provider}")

        return Quote(provider=provider, price=prices[provider], amount=amount)

    async def execute_swap(self, quote: Quote) -> ExecutionResult:
        await asyncio.sleep(self._config.execute_latency_sec)
        self._maybe_fail_transient("swap")

        cfg = self._config
        drift = self._rng.uniform(-cfg.max_price_drift, cfg.max_price_drift)
        final_price = round(quote.price * (1 + drift), 6)

        deviation = abs(final_price - quote.price) / quote.price
        if deviation > cfg.slippage_tolerance:
            raise RouterError.slippage(
                f"price moved {deviation:.2%} on {quote.provider} "
                f"(quoted {quote.price}, realized {final_price}, "
                f"tolerance {cfg.slippage_tolerance:.2%})"
            )

        tx_hash = "0x" + "".join(self._rng.choice("0123456789abcdef") for _ in range(64))
        return ExecutionResult(tx_hash=tx_hash, final_price=final_price)
