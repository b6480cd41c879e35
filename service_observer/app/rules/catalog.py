"""
Rule catalog: the registry of rule implementations known to the service.
"""

import re
from typing import Dict, List, Optional

from shared.errors import InvalidRuleNameError, UnknownRuleError
from shared.logging import get_logger
from .base import Clock, ObserverRule
from .filters import ObjectIdRule, SideIdRule, TimeRangeRule
from .stateful import RequestLimitRule, TimeLimitRule

_DISALLOWED_NAME_CHARS = re.compile(r"[^a-zA-Z0-9_]")


class RuleCatalog:
    """Rules indexed by canonical name, iterated in ascending priority."""

    def __init__(self, rules: Optional[List[ObserverRule]] = None):
        self.logger = get_logger("observer.rule_catalog")
        self._rules: Dict[str, ObserverRule] = {}
        self._ordered: List[ObserverRule] = []

        for rule in rules or []:
            self.register(rule)

        self.logger.info("Rules indexed", count=len(self._rules), rules=self.names())

    def register(self, rule: ObserverRule) -> None:
        """Register a rule under its canonical name."""
        name = self.sanitize_name(rule.name)
        if name != rule.name:
            raise InvalidRuleNameError(f"Rule name is not canonical: {rule.name}", rule.name)
        if name in self._rules:
            raise ValueError(f"Rule already registered: {name}")

        self._rules[name] = rule
        self._ordered = sorted(self._rules.values(), key=lambda r: (r.priority, r.name))

    @staticmethod
    def sanitize_name(raw_name: str) -> str:
        """Strip everything but letters, digits and underscore."""
        sanitized = _DISALLOWED_NAME_CHARS.sub("", str(raw_name))

        if not sanitized:
            raise InvalidRuleNameError(f"Invalid rule name after sanitization: {raw_name}", raw_name)

        if not sanitized[0].isascii() or not sanitized[0].isalpha():
            raise InvalidRuleNameError(f"Rule name must start with a letter: {sanitized}", raw_name)

        return sanitized

    def get(self, name: str) -> Optional[ObserverRule]:
        """Rule registered under ``name`` after sanitization, or None."""
        sanitized = self.sanitize_name(name)
        rule = self._rules.get(sanitized)
        if rule is None:
            self.logger.warning(
                "Rule not found",
                requested=name,
                sanitized=sanitized,
                available=self.names()
            )
        return rule

    def require(self, name: str) -> ObserverRule:
        """Like ``get`` but raises UnknownRuleError."""
        rule = self.get(name)
        if rule is None:
            raise UnknownRuleError(name, self.names())
        return rule

    def has(self, name: str) -> bool:
        try:
            return self.sanitize_name(name) in self._rules
        except InvalidRuleNameError:
            return False

    def list_all(self) -> List[ObserverRule]:
        return list(self._ordered)

    def names(self) -> List[str]:
        return [rule.name for rule in self._ordered]

    def __len__(self) -> int:
        return len(self._rules)

    def __contains__(self, name: str) -> bool:
        return self.has(name)


def default_catalog(clock: Optional[Clock] = None) -> RuleCatalog:
    """Catalog with every rule shipped by the service."""
    return RuleCatalog([
        TimeRangeRule(clock),
        TimeLimitRule(clock),
        RequestLimitRule(clock),
        ObjectIdRule(clock),
        SideIdRule(clock),
    ])
