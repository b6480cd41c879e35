"""
Filter pipeline for observer views.

One evaluation pass validates the observer's rule-set, lets every resolved
rule narrow the object query (predicate phase), fetches the candidates,
threads them through every rule's in-memory filter (memory phase), and
finally hands stateful rules to the StateManager. A pass whose state write
loses the optimistic version check is discarded and re-run on the reloaded
observer.
"""

import asyncio
import time
from contextlib import nullcontext
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from shared.errors import InvalidRuleNameError, PersistenceConflictError, RuleExecutionError
from shared.logging import get_logger
from shared.retry import RetryConfig, calculate_delay
from ..domain.models import GeoObject, Observer, utc_now
from ..domain.query import GeoObjectQuery
from ..persistence.interfaces import GeoObjectSource, ObserverStore
from ..rules.base import Clock
from ..rules.catalog import RuleCatalog
from ..rules.validator import ConfigValidator
from .metrics import PipelineMetrics
from .state_manager import ResolvedRule, StateManager

PREDICATE_PHASE = "predicate"
MEMORY_PHASE = "memory"


@dataclass
class FilterResult:
    """Outcome of an observer view evaluation."""
    objects: List[GeoObject]
    applied_rules: List[str] = field(default_factory=list)
    access_blocked: bool = False
    fallback: bool = False
    state_persisted: bool = False
    attempts: int = 0
    evaluation_time_ms: float = 0.0


@dataclass
class _Pass:
    objects: List[GeoObject]
    applied_rules: List[str] = field(default_factory=list)
    access_blocked: bool = False
    fallback: bool = False
    updated_rules: Optional[Dict[str, Any]] = None


class FilterPipeline:
    """Evaluates an observer's rule-set against its map's objects."""

    def __init__(
        self,
        catalog: RuleCatalog,
        validator: ConfigValidator,
        source: GeoObjectSource,
        store: ObserverStore,
        state_manager: Optional[StateManager] = None,
        metrics: Optional[PipelineMetrics] = None,
        clock: Optional[Clock] = None,
        retry_config: Optional[RetryConfig] = None
    ):
        self.catalog = catalog
        self.validator = validator
        self.source = source
        self.store = store
        self.state_manager = state_manager or StateManager(store)
        self.metrics = metrics
        self.clock: Clock = clock or utc_now
        self.retry_config = retry_config or RetryConfig(max_attempts=3, base_delay=0.05, max_delay=1.0)
        self.logger = get_logger("observer.pipeline")

    async def evaluate(self, observer: Observer) -> List[GeoObject]:
        """Objects the observer may currently see, ordered by id."""
        result = await self.run(observer)
        return result.objects

    async def run(self, observer: Observer) -> FilterResult:
        """Evaluate and persist rule state, retrying passes that lose a write conflict."""
        start_time = time.time()
        max_attempts = max(1, self.retry_config.max_attempts)

        current = observer
        attempts = 0
        persisted = False

        while True:
            attempts += 1
            outcome = await self._evaluate_once(current, self.clock())

            if outcome.updated_rules is None:
                break

            try:
                await self.state_manager.commit(current.id, outcome.updated_rules, current.version)
                persisted = True
                break

            except PersistenceConflictError as e:
                if self.metrics:
                    self.metrics.record_conflict()

                if attempts >= max_attempts:
                    self.logger.error(
                        "Dropping rule state update after repeated write conflicts",
                        observer_id=current.id,
                        attempts=attempts,
                        error=e.message
                    )
                    break

                self.logger.warning(
                    "Rule state write conflict, re-evaluating",
                    observer_id=current.id,
                    attempt=attempts,
                    expected_version=e.expected_version,
                    actual_version=e.actual_version
                )

                await asyncio.sleep(calculate_delay(attempts, self.retry_config))

                reloaded = await self.store.load(current.id)
                if reloaded is None:
                    self.logger.warning("Observer removed during evaluation", observer_id=current.id)
                    break
                current = reloaded

        duration = time.time() - start_time
        result = FilterResult(
            objects=outcome.objects,
            applied_rules=outcome.applied_rules,
            access_blocked=outcome.access_blocked,
            fallback=outcome.fallback,
            state_persisted=persisted,
            attempts=attempts,
            evaluation_time_ms=duration * 1000
        )

        if self.metrics:
            self.metrics.record_view(self._outcome_label(result), len(result.objects), duration)

        self.logger.info(
            "Observer view evaluated",
            observer_id=observer.id,
            map_id=observer.map_id,
            visible=len(result.objects),
            applied_rules=result.applied_rules,
            access_blocked=result.access_blocked,
            fallback=result.fallback,
            attempts=attempts,
            evaluation_time_ms=round(result.evaluation_time_ms, 2)
        )

        return result

    async def _evaluate_once(self, observer: Observer, now: datetime) -> _Pass:
        rule_set = observer.rules

        if not rule_set:
            return await self._default_view(observer, now)

        errors = self.validator.validate(rule_set)
        if errors:
            self.logger.warning(
                "Invalid observer rules, serving default view",
                observer_id=observer.id,
                errors=errors
            )
            return await self._default_view(observer, now)

        resolved = self.state_manager.prepare(self._resolve(rule_set))

        query = GeoObjectQuery.for_map(observer.map_id, now)
        for entry in resolved:
            query = self._apply(entry, PREDICATE_PHASE, entry.rule.apply_to_query, query)

        objects = [] if query.is_empty else await self.source.fetch(query)

        for entry in resolved:
            objects = self._apply(entry, MEMORY_PHASE, entry.rule.apply_to_objects, objects)

        updated = self.state_manager.advance(rule_set, resolved)

        return _Pass(
            objects=objects,
            applied_rules=[entry.rule.name for entry in resolved],
            access_blocked=any(self._blocks(entry) for entry in resolved),
            updated_rules=updated if self.state_manager.has_changes(rule_set, updated) else None
        )

    async def _default_view(self, observer: Observer, now: datetime) -> _Pass:
        objects = await self.source.find_active_by_map(observer.map_id, now)
        return _Pass(objects=objects, fallback=True)

    def _resolve(self, rule_set: Dict[str, Any]) -> List[ResolvedRule]:
        resolved = []
        for key, config in rule_set.items():
            try:
                rule = self.catalog.get(key)
            except InvalidRuleNameError as e:
                self.logger.warning("Skipping rule with invalid name", rule=key, error=e.message)
                continue

            if rule is None:
                continue

            resolved.append(ResolvedRule(key=key, rule=rule, config=config))

        resolved.sort(key=lambda entry: (entry.rule.priority, entry.rule.name))
        return resolved

    def _apply(self, entry: ResolvedRule, phase: str, step: Callable[[Any, Any], Any], value: Any) -> Any:
        timer = self.metrics.time_rule(entry.rule.name, phase) if self.metrics else nullcontext()
        try:
            with timer:
                return step(value, entry.config)
        except Exception as e:
            error = RuleExecutionError(entry.rule.name, phase, e)
            self.logger.error(
                "Rule failed, skipping its contribution",
                rule=entry.rule.name,
                phase=phase,
                error=error.message,
                error_type=type(e).__name__
            )
            if self.metrics:
                self.metrics.record_rule_error(entry.rule.name, phase)
            return value

    def _blocks(self, entry: ResolvedRule) -> bool:
        try:
            return entry.rule.blocks_access(entry.config)
        except Exception as e:
            self.logger.warning("Could not determine access state", rule=entry.rule.name, error=str(e))
            return False

    @staticmethod
    def _outcome_label(result: FilterResult) -> str:
        if result.fallback:
            return "fallback"
        if result.access_blocked:
            return "blocked"
        return "filtered"
