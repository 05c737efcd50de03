"""
Vault bootstrap sidecar.

Modules:
- common: configuration and the Vault HTTP client
- store: Secrets Manager writer for the issued credentials
- monitor: health check and cluster state classification
- initializer: one-shot init call and credential persistence
- handler: poll loop, signal handling and process entry point
"""

__all__ = [
    "common",
    "handler",
    "initializer",
    "monitor",
    "store",
]
