"""
Domain layer of the package registry.

This package is responsible for:
* The pydantic models persisted by the metadata and content stores.
* Version parsing, normalization and latest/next pointer computation.
* The version selector type and the single tag resolution rule.
* The exception hierarchy shared by services and the HTTP boundary.
"""
