"""
Configuration management for mongo-dump-stream.

All configuration is done via environment variables; command-line flags
override individual values. This module provides typed configuration
classes with validation.

Invariants:
    - All settings have sensible defaults for local use
    - low_water < high_water <= initial_capacity
    - Credentials in MONGO_URI are never logged

How to change safely:
    - Add new settings with defaults that maintain backward compatibility
    - Buffer and batch defaults affect memory use of every load
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field

from .wire.codec import SUPPORTED_VERSIONS

logger = logging.getLogger(__name__)

_MB = 1024 * 1024


@dataclass(frozen=True)
class StoreConfig:
    """Document store connection configuration.

    Attributes:
        uri: MongoDB connection string
        database: Database name (defaults to the one in the URI)
        server_selection_timeout_ms: Time to wait for a reachable server
    """

    uri: str = "mongodb://localhost:27017"
    database: str | None = None
    server_selection_timeout_ms: int = 30_000

    @classmethod
    def from_env(cls) -> StoreConfig:
        """Load configuration from environment variables."""
        return cls(
            uri=os.getenv("MONGO_URI", "mongodb://localhost:27017"),
            database=os.getenv("MONGO_DATABASE"),
            server_selection_timeout_ms=int(
                os.getenv("MONGO_SERVER_SELECTION_TIMEOUT_MS", "30000")
            ),
        )


@dataclass(frozen=True)
class DumpConfig:
    """Dump writer configuration.

    Attributes:
        protocol_version: Wire protocol version to write ("1" or "2")
    """

    protocol_version: str = "2"

    @classmethod
    def from_env(cls) -> DumpConfig:
        """Load configuration from environment variables."""
        return cls(protocol_version=os.getenv("DUMP_PROTOCOL_VERSION", "2"))


@dataclass(frozen=True)
class LoadConfig:
    """Load reader configuration.

    Attributes:
        initial_capacity: Starting size of the input buffer
        high_water: Unread bytes at which the input source is paused
        low_water: Unread bytes below which a paused source is resumed
        compact_threshold: Consumed prefix size that triggers compaction
        max_capacity: Hard cap on buffer size (0 = unbounded)
        batch_bytes: Byte threshold at which a write batch is flushed
        read_chunk_size: Bytes requested from the source per read
        max_record_bytes: Largest record accepted from the wire
        drop_existing: Drop existing collections before loading
    """

    initial_capacity: int = 16 * _MB
    high_water: int = 8 * _MB
    low_water: int = 2 * _MB
    compact_threshold: int = 4 * _MB
    max_capacity: int = 0
    batch_bytes: int = 4 * _MB
    read_chunk_size: int = 64 * 1024
    max_record_bytes: int = 48 * _MB
    drop_existing: bool = True

    @classmethod
    def from_env(cls) -> LoadConfig:
        """Load configuration from environment variables."""
        return cls(
            initial_capacity=int(os.getenv("LOAD_INITIAL_CAPACITY", str(16 * _MB))),
            high_water=int(os.getenv("LOAD_HIGH_WATER", str(8 * _MB))),
            low_water=int(os.getenv("LOAD_LOW_WATER", str(2 * _MB))),
            compact_threshold=int(os.getenv("LOAD_COMPACT_THRESHOLD", str(4 * _MB))),
            max_capacity=int(os.getenv("LOAD_MAX_CAPACITY", "0")),
            batch_bytes=int(os.getenv("LOAD_BATCH_BYTES", str(4 * _MB))),
            read_chunk_size=int(os.getenv("LOAD_READ_CHUNK", str(64 * 1024))),
            max_record_bytes=int(os.getenv("LOAD_MAX_RECORD_BYTES", str(48 * _MB))),
            drop_existing=os.getenv("LOAD_DROP_EXISTING", "true").lower() == "true",
        )

    def validate(self) -> None:
        """Validate buffer and batch settings.

        Raises:
            ValueError: If settings are inconsistent
        """
        if self.initial_capacity <= 0:
            raise ValueError("LOAD_INITIAL_CAPACITY must be positive")
        if not 0 <= self.low_water < self.high_water:
            raise ValueError("LOAD_LOW_WATER must be below LOAD_HIGH_WATER")
        if self.high_water > self.initial_capacity:
            raise ValueError("LOAD_HIGH_WATER must not exceed LOAD_INITIAL_CAPACITY")
        if self.max_capacity and self.max_capacity < self.initial_capacity:
            raise ValueError("LOAD_MAX_CAPACITY must be 0 or at least LOAD_INITIAL_CAPACITY")
        if self.batch_bytes <= 0:
            raise ValueError("LOAD_BATCH_BYTES must be positive")
        if self.read_chunk_size <= 0:
            raise ValueError("LOAD_READ_CHUNK must be positive")


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
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            log_format=os.getenv("LOG_FORMAT", "json"),
        )


@dataclass
class StreamConfig:
    """Complete configuration for dump and load operations.

    Attributes:
        store: Store connection configuration
        dump: Dump writer configuration
        load: Load reader configuration
        observability: Logging configuration
    """

    store: StoreConfig = field(default_factory=StoreConfig)
    dump: DumpConfig = field(default_factory=DumpConfig)
    load: LoadConfig = field(default_factory=LoadConfig)
    observability: ObservabilityConfig = field(default_factory=ObservabilityConfig)

    @classmethod
    def from_env(cls) -> StreamConfig:
        """Load complete configuration from environment variables.

        Raises:
            ValueError: If configuration is invalid.
        """
        config = cls(
            store=StoreConfig.from_env(),
            dump=DumpConfig.from_env(),
            load=LoadConfig.from_env(),
            observability=ObservabilityConfig.from_env(),
        )
        config.validate()
        return config

    def validate(self) -> None:
        """Validate configuration consistency.

        Raises:
            ValueError: If configuration is invalid.
        """
        if self.dump.protocol_version not in SUPPORTED_VERSIONS:
            raise ValueError(
                f"Invalid DUMP_PROTOCOL_VERSION '{self.dump.protocol_version}'. "
                f"Must be one of: {', '.join(SUPPORTED_VERSIONS)}"
            )
        self.load.validate()
        if self.observability.log_format not in ("json", "text"):
            raise ValueError("LOG_FORMAT must be json or text")

    def log_config(self) -> None:
        """Log configuration (without the connection string)."""
        logger.info(
            "Configuration loaded",
            extra={
                "database": self.store.database,
                "protocol_version": self.dump.protocol_version,
                "initial_capacity": self.load.initial_capacity,
                "high_water": self.load.high_water,
                "low_water": self.load.low_water,
                "max_capacity": self.load.max_capacity or None,
                "batch_bytes": self.load.batch_bytes,
                "drop_existing": self.load.drop_existing,
            },
        )
