"""
Service strategies.

Importing this package registers the built-in strategies:
- ``inline``: policy and state evaluated in-process
- ``delegating``: policy and state behind service tools
"""

from govjourney.runtime.strategies.base import (
    ServiceStrategy,
    StrategyContext,
    call_with_reconnect,
)
from govjourney.runtime.strategies.registry import StrategyRegistry, register_strategy
from govjourney.runtime.strategies.inline import InlineStrategy
from govjourney.runtime.strategies.delegating import DelegatingStrategy

__all__ = [
    "ServiceStrategy",
    "StrategyContext",
    "call_with_reconnect",
    "StrategyRegistry",
    "register_strategy",
    "InlineStrategy",
    "DelegatingStrategy",
]
