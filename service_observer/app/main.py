"""
Observer service: restricted map views filtered by per-observer rules.
"""

from typing import Optional, Union

from shared.base_service import BaseService
from shared.config import ServiceConfig
from shared.errors import NotFoundError
from shared.logging import set_observer_context
from shared.retry import RetryConfig

from .domain.models import (
    ObserverSummary, ObserverViewResponse, RuleDescription, RuleListResponse,
    RuleValidationRequest, RuleValidationResponse, feature_collection
)
from .engine.metrics import PipelineMetrics
from .engine.pipeline import FilterPipeline
from .engine.state_manager import StateManager
from .persistence.memory import InMemoryStorage
from .persistence.postgres import PostgreSQLPersistence
from .rules.base import Clock
from .rules.catalog import default_catalog
from .rules.schema import ConfigSchemaBuilder
from .rules.validator import ConfigValidator

Storage = Union[InMemoryStorage, PostgreSQLPersistence]


class ObserverService(BaseService):
    """Observer service implementation."""

    def __init__(
        self,
        config: Optional[ServiceConfig] = None,
        storage: Optional[Storage] = None,
        clock: Optional[Clock] = None
    ):
        super().__init__("observer", 8020, config)

        self.storage = storage or self._create_storage()
        self.catalog = default_catalog(clock)
        self.schema_builder = ConfigSchemaBuilder(self.catalog)
        self.validator = ConfigValidator(self.schema_builder)

        pipeline_metrics = None
        if self.config.metrics_enabled:
            pipeline_metrics = PipelineMetrics(self.metrics, rule_metrics=self.config.enable_rule_metrics)
            pipeline_metrics.record_catalog_size(len(self.catalog))

        self.pipeline = FilterPipeline(
            catalog=self.catalog,
            validator=self.validator,
            source=self.storage,
            store=self.storage,
            state_manager=StateManager(self.storage),
            metrics=pipeline_metrics,
            clock=clock,
            retry_config=RetryConfig(
                max_attempts=self.config.state_write_max_attempts,
                base_delay=self.config.state_write_retry_base_delay,
                max_delay=1.0
            )
        )

        self._setup_observer_routes()

    def _create_storage(self) -> Storage:
        if self.config.storage_backend == "memory":
            return InMemoryStorage()
        return PostgreSQLPersistence(
            self.config.postgres_dsn,
            min_pool_size=self.config.postgres_min_pool_size,
            max_pool_size=self.config.postgres_max_pool_size,
            connect_attempts=self.config.postgres_connect_attempts
        )

    def _setup_observer_routes(self):
        """Set up observer-specific routes."""

        @self.app.get("/")
        async def root():
            """Root endpoint."""
            return {
                "service": "observer",
                "message": "Observer Access - Observer Service",
                "version": "1.0.0",
                "capabilities": ["observer_view", "rule_catalog", "rule_validation"]
            }

        @self.app.get("/observer/{token}", response_model=ObserverViewResponse)
        async def observer_view(token: str):
            """Objects currently visible to the observer owning ``token``."""
            observer = await self.storage.find_by_access_token(token)
            if observer is None:
                raise NotFoundError("Observer not found")

            set_observer_context(observer.id, observer.map_id)
            result = await self.pipeline.run(observer)

            return ObserverViewResponse(
                observer=ObserverSummary(
                    id=observer.id,
                    name=observer.name,
                    icon=observer.icon,
                    map_id=observer.map_id
                ),
                access_blocked=result.access_blocked,
                objects=feature_collection(result.objects)
            )

        @self.app.get("/rules", response_model=RuleListResponse)
        async def list_rules():
            """Registered rules in evaluation order."""
            rules = [RuleDescription(**rule.describe()) for rule in self.catalog.list_all()]
            return RuleListResponse(rules=rules, total=len(rules))

        @self.app.post("/rules/validate", response_model=RuleValidationResponse)
        async def validate_rules(request: RuleValidationRequest):
            """Check an operator-supplied rule-set without storing it."""
            errors = self.validator.validate_operator_config(request.rules)
            return RuleValidationResponse(valid=not errors, errors=errors)

    async def _check_dependencies(self):
        """Check observer service dependencies."""
        healthy = await self.storage.health_check()
        return {self.config.storage_backend: "ok" if healthy else "error"}

    async def start(self):
        """Start observer service components."""
        await self.storage.start()
        self.logger.info("Observer service started", rules=self.catalog.names())

    async def stop(self):
        """Stop observer service components."""
        await self.storage.stop()
        self.logger.info("Observer service stopped")


def create_app():
    """Create observer service application."""
    service = ObserverService()
    return service.app


if __name__ == "__main__":
    service = ObserverService()
    service.run()
