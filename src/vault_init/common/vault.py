from __future__ import annotations

from typing import List, Optional

import httpx
from pydantic import BaseModel, Field, ValidationError

from .config import DEFAULT_VAULT_ADDR


HEALTH_PATH = "/v1/sys/health"
INIT_PATH = "/v1/sys/init"


class VaultError(RuntimeError):
    """Base error for the Vault client."""


class VaultTransportError(VaultError):
    """The request never produced an HTTP response (connect, TLS, timeout)."""


class VaultApiError(VaultError):
    """Vault answered with an unexpected status code."""

    def __init__(self, message: str, *, status_code: int) -> None:
        super().__init__(message)
        self.status_code = status_code


class VaultDecodeError(VaultError):
    """Vault answered 200 but the body could not be decoded."""


class InitRequest(BaseModel):
    stored_shares: int = Field(..., description="Shares stored in the seal (auto-unseal)")
    recovery_shares: int = Field(..., description="Number of recovery key shares")
    recovery_threshold: int = Field(..., description="Shares required to reconstruct")


class InitResponse(BaseModel):
    """
    Successful `PUT /v1/sys/init` body.

    Only the root token is required. Vault omits the recovery key lists when
    the seal type does not use them, so they default to empty.
    """

    root_token: str
    recovery_keys: List[str] = Field(default_factory=list)
    recovery_keys_base64: List[str] = Field(default_factory=list)


class VaultClient:
    """
    Minimal Vault HTTP client covering the two unauthenticated system
    endpoints needed for bootstrap.

    Notes
    - `health_status()` issues a HEAD request and only returns the status code;
      Vault encodes its state in the code (200/429/501/503...).
    - `initialize()` performs the one-time init call. It is not retried here:
      the caller decides whether another attempt is safe.
    - `insecure_skip_verify=True` disables TLS certificate verification. The
      sidecar talks to a pod-local listener with a self-signed certificate.
    """

    def __init__(
        self,
        addr: str = DEFAULT_VAULT_ADDR,
        *,
        insecure_skip_verify: bool = False,
        timeout: Optional[float] = 15.0,
        client: Optional[httpx.Client] = None,
    ) -> None:
        if not addr:
            raise ValueError("addr is required")
        self._addr = addr.rstrip("/")
        self._owns_client = client is None
        self._client = client or httpx.Client(
            base_url=self._addr,
            verify=not insecure_skip_verify,
            timeout=timeout,
        )

    @property
    def addr(self) -> str:
        return self._addr

    def close(self) -> None:
        if self._owns_client:
            self._client.close()

    def __enter__(self) -> "VaultClient":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    # --------------- Public API ---------------
    def health_status(self) -> int:
        """
        Send `HEAD /v1/sys/health` and return the HTTP status code.

        Raises VaultTransportError when no response was received.
        """
        try:
            resp = self._client.head(HEALTH_PATH)
        except (httpx.TimeoutException, httpx.TransportError) as exc:
            raise VaultTransportError(f"health check failed: {exc}") from exc
        return resp.status_code

    def initialize(self, request: InitRequest) -> InitResponse:
        """
        Send `PUT /v1/sys/init` and decode the response.

        Raises
        - VaultTransportError on network errors.
        - VaultApiError on any non-200 status.
        - VaultDecodeError when the 200 body is not a valid init response.
        """
        try:
            resp = self._client.put(INIT_PATH, json=request.model_dump())
        except (httpx.TimeoutException, httpx.TransportError) as exc:
            raise VaultTransportError(f"init request failed: {exc}") from exc

        if resp.status_code != 200:
            raise VaultApiError(
                f"init: non 200 status code: {resp.status_code}",
                status_code=resp.status_code,
            )

        try:
            payload = resp.json()
        except ValueError as exc:  # JSON decode error
            raise VaultDecodeError("init: response body is not valid JSON") from exc
        try:
            return InitResponse.model_validate(payload)
        except ValidationError as ve:
            # Do not echo the body: it carries the root token
            raise VaultDecodeError(
                f"init: unexpected response shape ({ve.error_count()} validation errors)"
            ) from ve


__all__ = [
    "VaultClient",
    "VaultError",
    "VaultTransportError",
    "VaultApiError",
    "VaultDecodeError",
    "InitRequest",
    "InitResponse",
]
