from __future__ import annotations

import logging
from typing import Optional, Sequence

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from .models import RecoveryKeysSecret, RootTokenSecret


logger = logging.getLogger(__name__)


class SecretStoreError(RuntimeError):
    """A Secrets Manager write did not succeed."""

    def __init__(self, message: str, *, secret_id: str, code: Optional[str] = None) -> None:
        super().__init__(message)
        self.secret_id = secret_id
        self.code = code


class SecretsManagerStore:
    """
    AWS Secrets Manager writer for the bootstrap credentials.

    Usage
    - Inject a boto3 `secretsmanager` client, or let the store build one from
      the default credential chain (`AWS_REGION`, instance role, ...).
    - `put_root_token()` and `put_recovery_keys()` each issue exactly one
      `PutSecretValue` call and return the new version id. They are
      independent: neither rolls back the other.

    The secrets themselves must already exist; this class only adds versions.
    """

    def __init__(
        self,
        *,
        client: Optional[object] = None,
        region_name: Optional[str] = None,
    ) -> None:
        self._client = client or boto3.client("secretsmanager", region_name=region_name)

    # -------- Core operations --------
    def put_secret_string(self, secret_id: str, secret_string: str) -> str:
        """Store `secret_string` as the new current version of `secret_id`.

        Raises SecretStoreError for any AWS-side or client-side failure.
        """
        try:
            resp = self._client.put_secret_value(SecretId=secret_id, SecretString=secret_string)
        except ClientError as e:
            code = e.response.get("Error", {}).get("Code")
            raise SecretStoreError(
                f"PutSecretValue failed for {secret_id}: {code}", secret_id=secret_id, code=code
            ) from e
        except BotoCoreError as e:
            raise SecretStoreError(
                f"PutSecretValue failed for {secret_id}: {e}", secret_id=secret_id
            ) from e

        version = str(resp.get("VersionId", ""))
        logger.debug("Stored new version %s of %s", version, secret_id)
        return version

    def put_root_token(self, secret_id: str, root_token: str) -> str:
        secret = RootTokenSecret(root_token=root_token)
        return self.put_secret_string(secret_id, secret.secret_string())

    def put_recovery_keys(self, secret_id: str, keys: Sequence[str]) -> str:
        secret = RecoveryKeysSecret(keys=list(keys))
        return self.put_secret_string(secret_id, secret.secret_string())


__all__ = ["SecretsManagerStore", "SecretStoreError"]
