"""
Secret store adapters for the bootstrap credentials.

The root token and the recovery keys are serialized to compact JSON and
written to AWS Secrets Manager as two independent secret versions.
"""

from .models import RecoveryKeysSecret, RootTokenSecret
from .secrets_manager import SecretsManagerStore, SecretStoreError

__all__ = ["RecoveryKeysSecret", "RootTokenSecret", "SecretsManagerStore", "SecretStoreError"]
