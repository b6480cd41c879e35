"""
Domain package.

- models: GeoObject, Geometry, Map, Side and Observer records plus the
  pydantic request/response models of the HTTP surface.
- query: the composable predicate rules contribute to.
"""
