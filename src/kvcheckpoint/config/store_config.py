"""Checkpoint store configuration with environment variable loading."""

import os
from typing import Optional
from pydantic import BaseModel, Field
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()


def _optional_int(name: str) -> Optional[int]:
    value = os.getenv(name)
    return int(value) if value else None


class StoreConfig(BaseModel):
    """Configuration for the checkpoint store and its backends."""

    # Key layout
    key_prefix: str = Field(
        default_factory=lambda: os.getenv("CKPT_KEY_PREFIX", "ckpt"),
        description="Prefix for every physical key",
    )
    max_key_length: int = Field(
        default_factory=lambda: int(os.getenv("CKPT_MAX_KEY_LENGTH", "250")),
        description="Maximum physical key length accepted by the backend",
    )

    # Expiry
    record_ttl: Optional[int] = Field(
        default_factory=lambda: _optional_int("CKPT_RECORD_TTL"),
        description="TTL for records, indexes and writes (seconds, None = no expiry)",
    )
    superseded_writes_ttl: Optional[int] = Field(
        default_factory=lambda: _optional_int("CKPT_SUPERSEDED_WRITES_TTL"),
        description="TTL applied to a parent's pending writes once superseded",
    )

    # Deadlines and batching
    default_timeout: Optional[float] = Field(
        default_factory=lambda: (
            float(os.environ["CKPT_DEFAULT_TIMEOUT"])
            if os.getenv("CKPT_DEFAULT_TIMEOUT")
            else None
        ),
        description="Deadline applied when a call passes no timeout (seconds)",
    )
    list_batch_size: int = Field(
        default_factory=lambda: int(os.getenv("CKPT_LIST_BATCH_SIZE", "50")),
        ge=1,
        description="Records fetched per round-trip while listing",
    )

    # Ordering
    emulate_ordering: bool = Field(
        default_factory=lambda: os.getenv("CKPT_EMULATE_ORDERING", "false").lower()
        in ("1", "true", "yes"),
        description="Maintain the ordering index with CAS on backends without lists",
    )

    # Optimistic concurrency
    cas_max_attempts: int = Field(
        default_factory=lambda: int(os.getenv("CKPT_CAS_MAX_ATTEMPTS", "8")),
        ge=1,
        description="Compare-and-swap attempts before WriteContention",
    )
    cas_backoff_base: float = Field(
        default_factory=lambda: float(os.getenv("CKPT_CAS_BACKOFF_BASE", "0.005")),
        description="First backoff delay after a lost compare-and-swap (seconds)",
    )
    cas_max_delay: float = Field(
        default_factory=lambda: float(os.getenv("CKPT_CAS_MAX_DELAY", "0.25")),
        description="Maximum backoff delay between compare-and-swap attempts",
    )

    # Transient error handling
    read_retries: int = Field(
        default_factory=lambda: int(os.getenv("CKPT_READ_RETRIES", "3")),
        ge=1,
        description="Attempts for idempotent reads on transient backend errors",
    )
    read_backoff_base: float = Field(
        default_factory=lambda: float(os.getenv("CKPT_READ_BACKOFF_BASE", "0.05")),
        description="First backoff delay between read attempts (seconds)",
    )
    retry_writes: bool = Field(
        default_factory=lambda: os.getenv("CKPT_RETRY_WRITES", "false").lower()
        in ("1", "true", "yes"),
        description="Opt in to retrying writes on transient errors",
    )

    # Redis Configuration
    redis_url: str = Field(
        default_factory=lambda: os.getenv("REDIS_URL", "redis://localhost:6379/0"),
        description="Redis connection URL",
    )
    connection_pool_size: int = Field(
        default_factory=lambda: int(os.getenv("CONNECTION_POOL_SIZE", "10")),
        description="Connection pool size for Redis",
    )
