"""
Validation of observer rule-sets.
"""

import re
from typing import Any, List
from zoneinfo import ZoneInfo

from jsonschema import Draft7Validator, FormatChecker

from shared.errors import ConfigurationError
from shared.logging import get_logger
from .schema import ConfigSchemaBuilder

RULE_NAME_PATTERN = re.compile(r"^[a-zA-Z][a-zA-Z0-9_]*$")

format_checker = FormatChecker()


@format_checker.checks("iana-timezone", raises=(KeyError, ValueError))
def is_iana_timezone(instance: Any) -> bool:
    if not isinstance(instance, str):
        return True
    ZoneInfo(instance)
    return True


class ConfigValidator:
    """Validates a rule-set: structural checks first, then the composite schema."""

    def __init__(self, schema_builder: ConfigSchemaBuilder):
        self.schema_builder = schema_builder
        self.logger = get_logger("observer.config_validator")

    def validate(self, config: Any) -> List[str]:
        """Errors for a stored rule-set (``_state`` allowed). Empty means valid."""
        return self._validate(config, allow_state=True)

    def validate_operator_config(self, config: Any) -> List[str]:
        """Errors for operator input, where ``_state`` is not accepted."""
        return self._validate(config, allow_state=False)

    def ensure_valid(self, config: Any) -> None:
        """Raise ConfigurationError when ``validate`` reports errors."""
        errors = self.validate(config)
        if errors:
            raise ConfigurationError(errors)

    def _validate(self, config: Any, allow_state: bool) -> List[str]:
        errors = self.validate_structure(config)
        if errors:
            self.logger.warning("Basic rule configuration validation failed", errors=errors)
            return errors

        schema = self.schema_builder.build(allow_state=allow_state)
        errors = self.validate_with_schema(config, schema)
        if errors:
            self.logger.warning("Rule configuration failed schema validation", errors=errors)
        return errors

    @staticmethod
    def validate_structure(config: Any) -> List[str]:
        if not isinstance(config, dict):
            return ["Configuration must be an object"]

        if not config:
            return ["Configuration cannot be empty"]

        errors = []
        for rule_name in config:
            if not isinstance(rule_name, str) or not rule_name:
                errors.append("Rule name must be a non-empty string")
            elif not RULE_NAME_PATTERN.match(rule_name):
                errors.append(f"Invalid rule name format: {rule_name}")
        return errors

    @staticmethod
    def validate_with_schema(config: Any, schema: dict) -> List[str]:
        validator = Draft7Validator(schema, format_checker=format_checker)
        errors = []
        for error in validator.iter_errors(config):
            path = ".".join(str(part) for part in error.absolute_path) or "root"
            errors.append(f"[{path}] {error.message}")
        return sorted(errors)
