"""
Observer Service package for the Observer Access layer.

This package serves restricted, token-authenticated views of a map. Each
observer carries a rule-set that decides which of the map's objects it may
currently see. It provides:

- app.main: API surface for observer views, the rule catalog and rule-set
  validation.
- app.rules: Rule contracts, the shipped rules, catalog and validation.
- app.engine: Two-phase filter pipeline and rule state persistence.
- app.persistence: PostgreSQL and in-memory storage.
- app.domain: Maps, objects, observers and the object query model.

Guidelines:
- A broken or unknown rule never fails a view; it is skipped and logged.
- Rule state is only written through the StateManager.
"""
