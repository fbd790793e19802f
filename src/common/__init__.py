"""
Common utilities for tofulicious.

Modules:
- config: environment driven server configuration
- logging_setup: stdlib logging configuration
- client: httpx client for a running backend
"""

__all__ = [
    "client",
    "config",
    "logging_setup",
]
