from dataclasses import dataclass
from typing import Awaitable, Callable

from .finalize import finalize_node
from .initialize import initialize_node
from .quality import quality_condition, quality_node
from .route import route_condition, route_node
from .specialist import specialist_node

AsyncNode = Callable[[dict], Awaitable[dict]]
Condition = Callable[[dict], str]


@dataclass
class AgentNodes:
    initialize_node: AsyncNode = initialize_node
    route_node: AsyncNode = route_node
    specialist_node: AsyncNode = specialist_node
    quality_node: AsyncNode = quality_node
    finalize_node: AsyncNode = finalize_node

    route_condition: Condition = route_condition
    quality_condition: Condition = quality_condition


__all__ = [
    "AgentNodes",
    "finalize_node",
    "initialize_node",
    "quality_condition",
    "quality_node",
    "route_condition",
    "route_node",
    "specialist_node",
]
