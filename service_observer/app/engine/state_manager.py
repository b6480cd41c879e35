"""
Read-modify-write of mutable rule state.
"""

import copy
from dataclasses import dataclass, replace
from typing import Any, Dict, List

from pydantic import ValidationError

from shared.errors import PersistenceConflictError
from shared.logging import get_logger
from ..persistence.interfaces import ObserverStore
from ..rules.base import STATE_KEY, ObserverRule, StatefulRule, with_state


@dataclass(frozen=True)
class ResolvedRule:
    """A rule-set entry bound to its implementation."""
    key: str
    rule: ObserverRule
    config: Any

    @property
    def stateful(self) -> bool:
        return isinstance(self.rule, StatefulRule)


class StateManager:
    """Computes and persists the state of stateful rules.

    Evaluation never writes state itself. The pipeline asks ``prepare`` for
    the configs both phases run on, ``advance`` for the rule-set to store,
    and ``commit`` to write it under the version it was computed from.
    """

    def __init__(self, store: ObserverStore):
        self.store = store
        self.logger = get_logger("observer.state_manager")

    def prepare(self, resolved: List[ResolvedRule]) -> List[ResolvedRule]:
        """Synthesize ``_state`` for stateful rules evaluated for the first time."""
        prepared = []
        for entry in resolved:
            if entry.stateful and isinstance(entry.config, dict) and entry.config.get(STATE_KEY) is None:
                state = entry.rule.initialize_state(entry.config)
                entry = replace(entry, config=with_state(entry.config, state))
                self.logger.debug("Initialized rule state", rule=entry.rule.name, state=state.model_dump())
            prepared.append(entry)
        return prepared

    def advance(self, rule_set: Dict[str, Any], resolved: List[ResolvedRule]) -> Dict[str, Any]:
        """Rule-set carrying each stateful rule's post-evaluation state.

        ``resolved`` must come from ``prepare``. The input rule-set is left
        untouched.
        """
        updated = copy.deepcopy(rule_set)
        for entry in resolved:
            if not entry.stateful or not isinstance(entry.config, dict):
                continue

            rule: StatefulRule = entry.rule
            try:
                state = rule.read_state(entry.config)
                if state is None:
                    state = rule.initialize_state(entry.config)
            except ValidationError as e:
                self.logger.warning(
                    "Stored rule state is unreadable, reinitializing",
                    rule=rule.name,
                    error=str(e)
                )
                state = rule.initialize_state(entry.config)

            next_state = rule.update_state(entry.config, state)
            updated[entry.key] = with_state(entry.config, next_state)

        return updated

    @staticmethod
    def has_changes(before: Dict[str, Any], after: Dict[str, Any]) -> bool:
        return before != after

    async def commit(self, observer_id: int, rule_set: Dict[str, Any], expected_version: int) -> int:
        """Persist ``rule_set`` if the observer is still at ``expected_version``."""
        current = await self.store.load(observer_id)
        if current is None:
            raise PersistenceConflictError(observer_id, expected_version)

        if current.version != expected_version:
            raise PersistenceConflictError(observer_id, expected_version, current.version)

        new_version = await self.store.save_rules(observer_id, rule_set, expected_version)

        self.logger.debug(
            "Rule state persisted",
            observer_id=observer_id,
            version=new_version
        )
        return new_version
