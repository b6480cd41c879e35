"""
Stateful visibility rules.

Both rules decide admission from the configuration as it was before the
current evaluation; the StateManager computes and persists the next state
once the pass is over.
"""

from typing import Any, Dict, List

from ..domain.models import GeoObject
from ..domain.query import GeoObjectQuery
from .base import StatefulRule
from .state import RequestLimitState, TimeLimitState

DEFAULT_REQUEST_LIMIT = 10
DEFAULT_DURATION_SECONDS = 300


def _nullable_timestamp(description: str) -> Dict[str, Any]:
    return {"type": ["integer", "null"], "description": description}


class RequestLimitRule(StatefulRule):
    """Allow a fixed number of views, then hide everything."""

    name = "request_limit"
    priority = 30
    state_model = RequestLimitState

    @classmethod
    def config_schema(cls) -> Dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "limit": {
                    "type": "integer",
                    "minimum": 1,
                    "description": "Maximum number of requests allowed",
                },
                "_state": {
                    "type": "object",
                    "properties": {
                        "remaining": {
                            "type": "integer",
                            "minimum": 0,
                            "description": "Number of requests remaining",
                        },
                        "initialized_at": {
                            "type": "integer",
                            "description": "Timestamp when rule was initialized",
                        },
                        "last_used_at": _nullable_timestamp("Timestamp of last request"),
                    },
                    "required": ["remaining", "initialized_at"],
                    "additionalProperties": False,
                },
            },
            "required": ["limit"],
            "additionalProperties": False,
        }

    def apply_to_query(self, query: GeoObjectQuery, config: Any) -> GeoObjectQuery:
        if self.blocks_access(config):
            return query.nothing()
        return query

    def apply_to_objects(self, objects: List[GeoObject], config: Any) -> List[GeoObject]:
        if self.blocks_access(config):
            return []
        return objects

    def blocks_access(self, config: Any) -> bool:
        state = self.read_state(config)
        if state is None:
            # Nothing consumed yet
            return False
        return state.remaining <= 0

    def initialize_state(self, config: Dict[str, Any]) -> RequestLimitState:
        return RequestLimitState(
            remaining=config.get("limit", DEFAULT_REQUEST_LIMIT),
            initialized_at=self.now_ts(),
            last_used_at=None,
        )

    def update_state(self, config: Dict[str, Any], state: RequestLimitState) -> RequestLimitState:
        return state.model_copy(update={
            "remaining": max(state.remaining - 1, 0),
            "last_used_at": self.now_ts(),
        })


class TimeLimitRule(StatefulRule):
    """Allow access for a fixed duration after the first view."""

    name = "time_limit"
    priority = 20
    state_model = TimeLimitState

    @classmethod
    def config_schema(cls) -> Dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "duration_seconds": {
                    "type": "integer",
                    "minimum": 1,
                    "description": "Duration in seconds for which access is allowed",
                },
                "_state": {
                    "type": "object",
                    "properties": {
                        "first_used_at": {
                            "type": "integer",
                            "description": "Timestamp when rule was first used",
                        },
                        "expires_at": {
                            "type": "integer",
                            "description": "Timestamp when rule expires",
                        },
                        "last_used_at": _nullable_timestamp("Timestamp of last request"),
                    },
                    "required": ["first_used_at", "expires_at"],
                    "additionalProperties": False,
                },
            },
            "required": ["duration_seconds"],
            "additionalProperties": False,
        }

    def apply_to_query(self, query: GeoObjectQuery, config: Any) -> GeoObjectQuery:
        if self.blocks_access(config):
            return query.nothing()
        return query

    def apply_to_objects(self, objects: List[GeoObject], config: Any) -> List[GeoObject]:
        if self.blocks_access(config):
            return []
        return objects

    def blocks_access(self, config: Any) -> bool:
        state = self.read_state(config)
        if state is None:
            return False
        return self.now_ts() > state.expires_at

    def initialize_state(self, config: Dict[str, Any]) -> TimeLimitState:
        now = self.now_ts()
        return TimeLimitState(
            first_used_at=now,
            expires_at=now + config.get("duration_seconds", DEFAULT_DURATION_SECONDS),
            last_used_at=None,
        )

    def update_state(self, config: Dict[str, Any], state: TimeLimitState) -> TimeLimitState:
        # The window is fixed at first use; only the usage stamp moves
        return state.model_copy(update={"last_used_at": self.now_ts()})
