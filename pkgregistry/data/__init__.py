"""
On-disk configuration for the package registry.

This package is responsible for:
* Determining the data directory (via env var + sensible default).
* Loading and persisting registry-level configuration.
"""
