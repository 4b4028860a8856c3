# CLMM Strategies Module
from typing import Callable, Dict

from .base_strategy import Action, ClosePosition, OpenPosition, Rebalance, Strategy
from .no_rebalance import NoRebalanceStrategy
from .simple_rebalance import SimpleRebalanceStrategy

STRATEGIES: Dict[str, Callable[..., Strategy]] = {
    'no_rebalance': NoRebalanceStrategy,
    'simple_rebalance': SimpleRebalanceStrategy,
}


def register_strategy(name: str, factory: Callable[..., Strategy]) -> None:
    STRATEGIES[name] = factory


def create_strategy(name: str, **params) -> Strategy:
    """Build a strategy by registry name"""
    try:
        factory = STRATEGIES[name]
    except KeyError:
        raise ValueError(
            f"Unknown strategy {name!r}, available: {', '.join(sorted(STRATEGIES))}"
        ) from None
    return factory(**params)


__all__ = [
    'Action',
    'ClosePosition',
    'OpenPosition',
    'Rebalance',
    'Strategy',
    'NoRebalanceStrategy',
    'SimpleRebalanceStrategy',
    'STRATEGIES',
    'create_strategy',
    'register_strategy',
]
