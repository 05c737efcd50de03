"""
Common utilities for vault-init.

Modules:
- config: immutable process configuration resolved from the environment
- vault: minimal Vault HTTP client (health check, init call)
"""

__all__ = [
    "config",
    "vault",
]
