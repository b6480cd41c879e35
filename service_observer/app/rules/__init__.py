"""
Rules package.

Defines the observer visibility rules and the machinery that validates
rule-sets before they are evaluated.

Modules of interest:
- base: ObserverRule / StatefulRule contracts and the reserved ``_state`` key.
- filters: stateless rules (ObjectIdRule, SideIdRule, time_range).
- stateful: rules with persisted state (request_limit, time_limit).
- state: typed pydantic models for persisted rule state.
- catalog: registry indexed by canonical name and sorted by priority.
- schema / validator: composite JSON Schema and rule-set validation.

Adding a rule means subclassing ObserverRule (or StatefulRule) and
registering it in ``catalog.default_catalog``.
"""
