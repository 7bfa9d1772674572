"""Configuration package."""

from .store_config import StoreConfig

__all__ = ["StoreConfig"]
