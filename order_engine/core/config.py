"""
Centralized configuration for the order engine.
Loads from environment variables with sensible defaults.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

ENV_PREFIX = "ORDER_ENGINE_"


def _env(name: str, default: str) -> str:
    return os.getenv(f"{ENV_PREFIX}{name}", default)


@dataclass(frozen=True)
class RuntimeConfig:
    """Runtime environment settings."""
    log_level: str = "INFO"
    db_path: Path = field(default_factory=lambda: Path("./data/orders.db"))


@dataclass(frozen=True)
class SpineConfig:
    """NATS connection and event fan-out settings."""
    nats_url: str = "nats://localhost:4222"
    # "broadcast": every connection receives every order event and filters.
    # "per_order": each connection subscribes to its own order's subject.
    event_topic_mode: str = "broadcast"


@dataclass(frozen=True)
class WorkerConfig:
    """Job consumption and retry settings."""
    concurrency: int = 10
    max_attempts: int = 3
    backoff_base_sec: float = 1.0
    backoff_max_sec: float = 30.0
    build_delay_sec: float = 0.5
    receive_timeout_sec: float = 1.0


@dataclass(frozen=True)
class RouterConfig:
    """Simulated DEX router parameters."""
    base_price: float = 1.0
    venue_spread: float = 0.02
    quote_latency_sec: float = 0.2
    execute_latency_sec: float = 2.0
    slippage_tolerance: float = 0.01
    max_price_drift: float = 0.015
    transient_failure_rate: float = 0.0


@dataclass(frozen=True)
class ServerConfig:
    """HTTP/WebSocket server settings."""
    host: str = "0.0.0.0"
    port: int = 3000
    embedded_worker: bool = True


@dataclass
class EngineConfig:
    """Top-level configuration container."""
    runtime: RuntimeConfig
    spine: SpineConfig
    worker: WorkerConfig
    router: RouterConfig
    server: ServerConfig

    @classmethod
    def from_env(cls) -> "EngineConfig":
        """Load configuration from environment variables."""
        return cls(
            runtime=RuntimeConfig(
                log_level=_env("LOG_LEVEL", "INFO"),
                db_path=Path(_env("DB_PATH", "./data/orders.db")),
            ),
            spine=SpineConfig(
                nats_url=_env("NATS_URL", "nats://localhost:4222"),
                event_topic_mode=_env("EVENT_TOPIC_MODE", "broadcast").lower(),
            ),
            worker=WorkerConfig(
                concurrency=int(_env("WORKER_CONCURRENCY", "10")),
                max_attempts=int(_env("MAX_ATTEMPTS", "3")),
                backoff_base_sec=float(_env("BACKOFF_BASE_SEC", "1.0")),
                backoff_max_sec=float(_env("BACKOFF_MAX_SEC", "30.0")),
                build_delay_sec=float(_env("BUILD_DELAY_SEC", "0.5")),
                receive_timeout_sec=float(_env("RECEIVE_TIMEOUT_SEC", "1.0")),
            ),
            router=RouterConfig(
                quote_latency_sec=float(_env("QUOTE_LATENCY_SEC", "0.2")),
                execute_latency_sec=float(_env("EXECUTE_LATENCY_SEC", "2.0")),
                slippage_tolerance=float(_env("SLIPPAGE_TOLERANCE", "0.01")),
                max_price_drift=float(_env("MAX_PRICE_DRIFT", "0.015")),
                transient_failure_rate=float(_env("TRANSIENT_FAILURE_RATE", "0.0")),
            ),
            server=ServerConfig(
                host=_env("HOST", "0.0.0.0"),
                port=int(_env("PORT", "3000")),
                embedded_worker=_env("EMBEDDED_WORKER", "true").lower() == "true",
            ),
        )


# Global config instance (lazy-loaded)
_config: Optional[EngineConfig] = None


def get_config() -> EngineConfig:
    """Get or create the global configuration."""
    global _config
    if _config is None:
        _config = EngineConfig.from_env()
    return _config


def reset_config() -> None:
    """Reset configuration (useful for testing)."""
    global _config
    _config = None
