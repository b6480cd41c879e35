"""
Rule contracts for observer visibility filtering.
"""

import copy
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Type

from pydantic import BaseModel

from shared.logging import get_logger
from ..domain.models import GeoObject, utc_now
from ..domain.query import GeoObjectQuery

STATE_KEY = "_state"

Clock = Callable[[], datetime]


class ObserverRule(ABC):
    """Base class for visibility rules.

    A rule contributes to the predicate phase through ``apply_to_query`` and
    to the in-memory phase through ``apply_to_objects``. Both default to
    identity, so a rule only overrides the phase it can express.
    Lower ``priority`` values are evaluated first.
    """

    name: str = ""
    priority: int = 100
    stateful: bool = False

    def __init__(self, clock: Optional[Clock] = None):
        self.clock: Clock = clock or utc_now
        self.logger = get_logger(f"observer.rules.{self.name}")

    @classmethod
    def config_schema(cls) -> Dict[str, Any]:
        """JSON Schema for this rule's configuration. Empty means unconstrained."""
        return {}

    def apply_to_query(self, query: GeoObjectQuery, config: Any) -> GeoObjectQuery:
        return query

    def apply_to_objects(self, objects: List[GeoObject], config: Any) -> List[GeoObject]:
        return objects

    def blocks_access(self, config: Any) -> bool:
        """Whether the rule currently denies every object."""
        return False

    def describe(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "priority": self.priority,
            "stateful": self.stateful,
            "schema": self.config_schema(),
        }

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r}, priority={self.priority})"


class StatefulRule(ObserverRule):
    """Rule whose decision depends on state persisted between evaluations.

    The state lives under the reserved ``_state`` key of the rule config and
    is only ever written by the StateManager. Subclasses work on a typed
    ``state_model`` and never see the raw mapping.
    """

    stateful = True
    state_model: Type[BaseModel]

    def now_ts(self) -> int:
        return int(self.clock().timestamp())

    def read_state(self, config: Any) -> Optional[BaseModel]:
        """Typed state from a config, or None when no state was persisted yet."""
        if not isinstance(config, dict) or config.get(STATE_KEY) is None:
            return None
        return self.state_model.model_validate(config[STATE_KEY])

    @abstractmethod
    def initialize_state(self, config: Dict[str, Any]) -> BaseModel:
        """State for a rule evaluated for the first time."""

    @abstractmethod
    def update_state(self, config: Dict[str, Any], state: BaseModel) -> BaseModel:
        """State after one more evaluation. Must not mutate ``state``."""


def with_state(config: Dict[str, Any], state: BaseModel) -> Dict[str, Any]:
    """Copy of ``config`` carrying the serialized ``state``."""
    updated = copy.deepcopy(config)
    updated[STATE_KEY] = state.model_dump()
    return updated
