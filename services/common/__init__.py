"""
Common utilities shared across site monitor services.

This package is intentionally small and focused on pure, dependency-light
helpers that are reused by multiple services (e.g., retry with backoff).
"""
