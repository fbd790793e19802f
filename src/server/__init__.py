"""
HTTP server and CLI for the state backend.

Modules:
- app: Flask application implementing the Terraform/OpenTofu http backend protocol
- cli: click entry point (`serve`, `lock-status`, `force-unlock`)
"""

__all__ = [
    "app",
    "cli",
]
