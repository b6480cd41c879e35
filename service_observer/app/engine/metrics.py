"""
Pipeline metrics on top of the shared collector.
"""

from contextlib import contextmanager

from shared.metrics import MetricsCollector


class PipelineMetrics:
    """Records what the filter pipeline does."""

    def __init__(self, collector: MetricsCollector, rule_metrics: bool = True):
        self.collector = collector
        self.rule_metrics = rule_metrics

    @contextmanager
    def time_rule(self, rule_name: str, phase: str):
        """Time one rule in one phase."""
        if self.rule_metrics:
            with self.collector.time_operation("rule_phase_duration_seconds", rule=rule_name, phase=phase):
                yield
        else:
            yield

    def record_rule_error(self, rule_name: str, phase: str):
        self.collector.increment_counter("rule_phase_errors_total", rule=rule_name, phase=phase)

    def record_view(self, outcome: str, visible: int, duration: float):
        self.collector.increment_counter("observer_views_total", outcome=outcome)
        self.collector.observe_histogram("observer_view_duration_seconds", duration)
        self.collector.observe_histogram("visible_objects", visible)

    def record_conflict(self):
        self.collector.increment_counter("state_write_conflicts_total")

    def record_catalog_size(self, count: int):
        self.collector.set_gauge("registered_rules", count)
