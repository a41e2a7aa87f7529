"""
Configuration management for the MfgLedger engine.

All configuration is done via environment variables - no config files inside containers.
This module provides typed configuration classes with validation.

Invariants:
    - All settings have sensible defaults for local development
    - The retry budget is always bounded (max_attempts >= 1)

How to change safely:
    - Add new settings with defaults that maintain backward compatibility
    - Keep env variable names prefixed with MFGLEDGER_
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from enum import Enum

logger = logging.getLogger(__name__)


class StoreBackend(Enum):
    """Supported ledger store backends."""

    SQLITE = "sqlite"
    MEMORY = "memory"


@dataclass(frozen=True)
class StoreConfig:
    """Ledger store configuration.

    Attributes:
        backend: Which store implementation to use
        data_dir: Directory for per-tenant SQLite databases
        wal_mode: SQLite WAL journal mode enabled
        busy_timeout_ms: SQLite busy timeout in milliseconds
        cache_size_pages: SQLite cache size in pages (negative = KB)
    """

    backend: StoreBackend = StoreBackend.SQLITE
    data_dir: str = "/var/lib/mfgledger"
    wal_mode: bool = True
    busy_timeout_ms: int = 5000
    cache_size_pages: int = -64000  # 64MB

    @classmethod
    def from_env(cls) -> StoreConfig:
        """Load configuration from environment variables."""
        backend_str = os.getenv("MFGLEDGER_STORE_BACKEND", "sqlite").lower()
        try:
            backend = StoreBackend(backend_str)
        except ValueError:
            raise ValueError(
                f"Invalid MFGLEDGER_STORE_BACKEND '{backend_str}'. Must be one of: sqlite, memory"
            )

        return cls(
            backend=backend,
            data_dir=os.getenv("MFGLEDGER_DATA_DIR", "/var/lib/mfgledger"),
            wal_mode=os.getenv("MFGLEDGER_SQLITE_WAL_MODE", "true").lower() == "true",
            busy_timeout_ms=int(os.getenv("MFGLEDGER_SQLITE_BUSY_TIMEOUT_MS", "5000")),
            cache_size_pages=int(os.getenv("MFGLEDGER_SQLITE_CACHE_SIZE", "-64000")),
        )


@dataclass(frozen=True)
class CoordinatorConfig:
    """Transaction coordinator retry policy.

    Attributes:
        max_attempts: Total attempts per operation (first try included)
        base_delay_ms: Backoff ceiling for the first retry
        max_delay_ms: Upper bound on any single backoff
    """

    max_attempts: int = 5
    base_delay_ms: int = 20
    max_delay_ms: int = 500

    @classmethod
    def from_env(cls) -> CoordinatorConfig:
        """Load configuration from environment variables."""
        return cls(
            max_attempts=int(os.getenv("MFGLEDGER_TX_MAX_ATTEMPTS", "5")),
            base_delay_ms=int(os.getenv("MFGLEDGER_TX_BASE_DELAY_MS", "20")),
            max_delay_ms=int(os.getenv("MFGLEDGER_TX_MAX_DELAY_MS", "500")),
        )


@dataclass(frozen=True)
class ObservabilityConfig:
    """Logging configuration.

    Attributes:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        log_format: Log format (json, text)
    """

    log_level: str = "INFO"
    log_format: str = "json"

    @classmethod
    def from_env(cls) -> ObservabilityConfig:
        """Load configuration from environment variables."""
        return cls(
            log_level=os.getenv("MFGLEDGER_LOG_LEVEL", "INFO"),
            log_format=os.getenv("MFGLEDGER_LOG_FORMAT", "json"),
        )


@dataclass
class LedgerConfig:
    """Complete engine configuration.

    Attributes:
        store: Ledger store configuration
        coordinator: Retry policy for optimistic transactions
        observability: Logging configuration
    """

    store: StoreConfig = field(default_factory=StoreConfig)
    coordinator: CoordinatorConfig = field(default_factory=CoordinatorConfig)
    observability: ObservabilityConfig = field(default_factory=ObservabilityConfig)

    @classmethod
    def from_env(cls) -> LedgerConfig:
        """Load complete configuration from environment variables.

        Returns:
            LedgerConfig with all sections populated from environment.

        Raises:
            ValueError: If configuration is missing or invalid.
        """
        config = cls(
            store=StoreConfig.from_env(),
            coordinator=CoordinatorConfig.from_env(),
            observability=ObservabilityConfig.from_env(),
        )

        config.validate()
        return config

    def validate(self) -> None:
        """Validate configuration consistency.

        Raises:
            ValueError: If configuration is invalid.
        """
        if self.coordinator.max_attempts < 1:
            raise ValueError("MFGLEDGER_TX_MAX_ATTEMPTS must be at least 1")
        if self.coordinator.base_delay_ms < 0 or self.coordinator.max_delay_ms < 0:
            raise ValueError("Backoff delays must not be negative")
        if self.coordinator.base_delay_ms > self.coordinator.max_delay_ms:
            raise ValueError("MFGLEDGER_TX_BASE_DELAY_MS must not exceed MFGLEDGER_TX_MAX_DELAY_MS")

        if self.observability.log_format not in ("json", "text"):
            raise ValueError(
                f"Invalid MFGLEDGER_LOG_FORMAT '{self.observability.log_format}'. Must be json or text"
            )

        if self.store.backend == StoreBackend.SQLITE:
            if not self.store.data_dir:
                raise ValueError("MFGLEDGER_DATA_DIR is required when MFGLEDGER_STORE_BACKEND=sqlite")
            if not os.path.exists(self.store.data_dir):
                logger.warning(
                    f"Data directory does not exist: {self.store.data_dir}. "
                    "It will be created on first write."
                )

    def log_config(self) -> None:
        """Log configuration."""
        logger.info(
            "Ledger configuration loaded",
            extra={
                "store_backend": self.store.backend.value,
                "data_dir": self.store.data_dir
                if self.store.backend == StoreBackend.SQLITE
                else None,
                "tx_max_attempts": self.coordinator.max_attempts,
                "tx_base_delay_ms": self.coordinator.base_delay_ms,
                "tx_max_delay_ms": self.coordinator.max_delay_ms,
                "log_level": self.observability.log_level,
            },
        )
