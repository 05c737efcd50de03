from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from typing import Optional

from .common.vault import VaultClient, VaultTransportError


logger = logging.getLogger(__name__)


class ClusterState(enum.Enum):
    INITIALIZED = "initialized"
    STANDBY = "standby"
    UNINITIALIZED = "uninitialized"
    UNKNOWN = "unknown"


# Vault health endpoint status codes (default query parameters)
_STATE_BY_CODE = {
    200: ClusterState.INITIALIZED,
    429: ClusterState.STANDBY,
    501: ClusterState.UNINITIALIZED,
}


@dataclass(frozen=True)
class HealthStatus:
    state: ClusterState
    status_code: int

    @property
    def needs_init(self) -> bool:
        return self.state is ClusterState.UNINITIALIZED


def classify_health_status(status_code: int) -> HealthStatus:
    return HealthStatus(
        state=_STATE_BY_CODE.get(status_code, ClusterState.UNKNOWN),
        status_code=status_code,
    )


class HealthMonitor:
    """
    Classifies the cluster from a single `HEAD /v1/sys/health` request.

    Each poll is independent: no history, no debouncing. A transport failure
    is not a cluster state; `poll()` logs it and returns None so the caller
    simply waits for the next interval.
    """

    def __init__(self, vault: VaultClient) -> None:
        self._vault = vault

    def poll(self) -> Optional[HealthStatus]:
        try:
            code = self._vault.health_status()
        except VaultTransportError as e:
            logger.warning("%s", e)
            return None

        status = classify_health_status(code)
        if status.state is ClusterState.INITIALIZED:
            logger.info("Vault is initialized and unsealed.")
        elif status.state is ClusterState.STANDBY:
            logger.info("Vault is unsealed and in standby mode.")
        elif status.state is ClusterState.UNINITIALIZED:
            logger.info("Vault is not initialized.")
        else:
            logger.warning("Vault is in an unknown state. Status code: %d", code)
        return status


__all__ = ["ClusterState", "HealthStatus", "HealthMonitor", "classify_health_status"]
