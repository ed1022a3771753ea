"""
Handler providers: the contract, the registry and the built-in watchers.
"""

from .base import ChangeEvent, HandlerProvider
from .registry import HandlerRecord, HandlerRegistry

__all__ = ["ChangeEvent", "HandlerProvider", "HandlerRecord", "HandlerRegistry"]
