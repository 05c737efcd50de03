from __future__ import annotations

import json
from typing import Dict, List

from pydantic import BaseModel, ConfigDict, Field


RECOVERY_KEY_LABEL = "recovery-key-"


def _dump_compact(payload: Dict[str, str]) -> str:
    # Insertion order is kept so recovery keys appear in response order
    return json.dumps(payload, separators=(",", ":"))


class RootTokenSecret(BaseModel):
    """
    Secret value stored under the root-token secret id.

    Serialized as `{"root-token": "<token>"}`.
    """

    model_config = ConfigDict(populate_by_name=True)

    root_token: str = Field(..., alias="root-token")

    def secret_string(self) -> str:
        return _dump_compact(self.model_dump(by_alias=True))


class RecoveryKeysSecret(BaseModel):
    """
    Secret value stored under the recovery-keys secret id.

    Fields
    - keys: recovery key shares in the order Vault returned them.

    Notes
    - Serialized as a flat mapping labelled `recovery-key-1`, `recovery-key-2`, ...
      (1-indexed, encounter order), e.g. `{"recovery-key-1": "abcd", ...}`.
    """

    keys: List[str] = Field(default_factory=list, description="Recovery key shares")

    def as_mapping(self) -> Dict[str, str]:
        return {f"{RECOVERY_KEY_LABEL}{i}": key for i, key in enumerate(self.keys, start=1)}

    def secret_string(self) -> str:
        return _dump_compact(self.as_mapping())
