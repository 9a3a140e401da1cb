"""
Strategy registry for selecting a service strategy by name.
"""

import logging
from typing import Any, Callable, Dict, List, Optional, Type

from govjourney.runtime.strategies.base import ServiceStrategy

logger = logging.getLogger(__name__)


class StrategyRegistry:
    """
    Registry for service strategy implementations.

    Usage:
        ```python
        strategy = StrategyRegistry.create("inline", external_tools=tools)
        ```
    """

    _strategies: Dict[str, Type[ServiceStrategy]] = {}

    @classmethod
    def register(cls, name: str, strategy_class: Type[ServiceStrategy]) -> None:
        if name in cls._strategies:
            logger.warning(f"Overwriting existing strategy registration: {name}")
        cls._strategies[name] = strategy_class
        logger.debug(f"Registered service strategy: {name}")

    @classmethod
    def get(cls, name: str) -> Optional[Type[ServiceStrategy]]:
        return cls._strategies.get(name)

    @classmethod
    def create(cls, name: str, **kwargs: Any) -> ServiceStrategy:
        """
        Instantiate a registered strategy.

        Raises:
            ValueError: If no strategy is registered under ``name``
        """
        strategy_class = cls.get(name)
        if not strategy_class:
            available = ", ".join(cls._strategies.keys()) or "none"
            raise ValueError(
                f"Unknown service strategy: '{name}'. Available strategies: {available}"
            )
        return strategy_class(**kwargs)

    @classmethod
    def list_strategies(cls) -> List[str]:
        return list(cls._strategies.keys())

    @classmethod
    def is_registered(cls, name: str) -> bool:
        return name in cls._strategies


def register_strategy(
    name: str,
) -> Callable[[Type[ServiceStrategy]], Type[ServiceStrategy]]:
    """
    Decorator to auto-register a strategy class.

    Usage:
        @register_strategy("inline")
        class InlineStrategy(ServiceStrategy):
            ...
    """

    def decorator(cls: Type[ServiceStrategy]) -> Type[ServiceStrategy]:
        StrategyRegistry.register(name, cls)
        return cls

    return decorator
