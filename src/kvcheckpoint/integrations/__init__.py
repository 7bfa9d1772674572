"""Workflow framework integrations."""

from .langgraph_saver import KeyValueSaver

__all__ = ["KeyValueSaver"]
