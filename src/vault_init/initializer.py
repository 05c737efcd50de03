from __future__ import annotations

import logging
from typing import Optional

from .common.config import Config
from .common.vault import InitRequest, InitResponse, VaultClient, VaultError
from .store.secrets_manager import SecretsManagerStore, SecretStoreError


logger = logging.getLogger(__name__)


class CredentialPersistError(RuntimeError):
    """
    Vault is initialized but its credentials were not fully stored.

    Vault will not hand out the root token or recovery keys a second time,
    so the process must stop and an operator has to intervene.
    """

    def __init__(self, message: str, *, root_token_stored: bool) -> None:
        super().__init__(message)
        self.root_token_stored = root_token_stored


class Initializer:
    """
    One-shot `PUT /v1/sys/init` followed by persisting the result.

    - `initialize()` absorbs every failure that happens before Vault has
      issued credentials (network, non-200, undecodable body) and returns
      None; the poll loop will observe "uninitialized" again and retry.
    - `persist()` writes the root token, then the recovery keys, as two
      independent secret versions. Any failure raises CredentialPersistError.
    """

    def __init__(self, config: Config, vault: VaultClient, store: SecretsManagerStore) -> None:
        self._config = config
        self._vault = vault
        self._store = store

    def build_request(self) -> InitRequest:
        return InitRequest(
            stored_shares=self._config.stored_shares,
            recovery_shares=self._config.recovery_shares,
            recovery_threshold=self._config.recovery_threshold,
        )

    def initialize(self) -> Optional[InitResponse]:
        try:
            return self._vault.initialize(self.build_request())
        except VaultError as e:
            logger.error("%s", e)
            return None

    def persist(self, result: InitResponse) -> None:
        cfg = self._config
        logger.info("Storing root token and recovery keys in Secrets Manager...")

        try:
            self._store.put_root_token(cfg.root_token_secret_id, result.root_token)
        except SecretStoreError as e:
            raise CredentialPersistError(
                f"Vault was initialized but the root token could not be stored: {e}",
                root_token_stored=False,
            ) from e

        try:
            self._store.put_recovery_keys(cfg.recovery_keys_secret_id, result.recovery_keys)
        except SecretStoreError as e:
            raise CredentialPersistError(
                f"Vault was initialized and the root token was stored in "
                f"{cfg.root_token_secret_id}, but the recovery keys could not be stored: {e}",
                root_token_stored=True,
            ) from e

        logger.info("Initialization complete.")

    def run(self) -> bool:
        """Initialize and persist. Returns False when the attempt was abandoned."""
        logger.info("Initializing...")
        result = self.initialize()
        if result is None:
            return False
        self.persist(result)
        return True


__all__ = ["Initializer", "CredentialPersistError"]
