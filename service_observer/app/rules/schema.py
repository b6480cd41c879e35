"""
Composite JSON Schema for observer rule-sets.
"""

import copy
from typing import Any, Dict

from shared.logging import get_logger
from .base import STATE_KEY
from .catalog import RuleCatalog


class ConfigSchemaBuilder:
    """Builds one schema out of every registered rule's own schema."""

    def __init__(self, catalog: RuleCatalog):
        self.catalog = catalog
        self.logger = get_logger("observer.schema_builder")
        self._cache: Dict[bool, Dict[str, Any]] = {}

    def build(self, allow_state: bool = True) -> Dict[str, Any]:
        """Top-level object keyed by rule name.

        With ``allow_state=False`` the reserved ``_state`` property is removed
        from every rule schema, so operator input carrying it is rejected.
        """
        if allow_state not in self._cache:
            properties = {}
            for rule in self.catalog.list_all():
                rule_schema = copy.deepcopy(rule.config_schema())
                if not allow_state:
                    rule_schema.get("properties", {}).pop(STATE_KEY, None)
                properties[rule.name] = rule_schema

            self._cache[allow_state] = {
                "$schema": "http://json-schema.org/draft-07/schema#",
                "type": "object",
                "properties": properties,
                "additionalProperties": False,
                "minProperties": 1,
            }

            self.logger.debug(
                "Built schema from available rules",
                rules_count=len(properties),
                rule_names=list(properties),
                allow_state=allow_state
            )

        return self._cache[allow_state]

    def invalidate(self) -> None:
        """Drop cached schemas after the catalog changed."""
        self._cache.clear()
