from __future__ import annotations

import json
import logging
import signal
import threading
from typing import Any, Callable, Dict, List, Optional, Sequence

import httpx
import pytest

from vault_init.common.config import Config
from vault_init.common.vault import VaultClient
from vault_init.store.secrets_manager import SecretsManagerStore
from vault_init import handler
from vault_init.initializer import CredentialPersistError, Initializer
from vault_init.monitor import HealthMonitor


ROOT_ID = "vault-root-token"
RECOVERY_ID = "vault-recovery-keys"


class _StopAfter:
    """Stand-in for threading.Event that trips after `cycles` waits."""

    def __init__(self, cycles: int) -> None:
        self._left = cycles
        self.waits: List[float] = []

    def is_set(self) -> bool:
        return self._left <= 0

    def wait(self, timeout: Optional[float] = None) -> bool:
        self.waits.append(timeout or 0.0)
        self._left -= 1
        return self.is_set()


class _FakeVault:
    """MockTransport handler: scripted health codes and a canned init reply."""

    def __init__(self, health: Sequence[Any], *, init_status: int = 200, n_keys: int = 5) -> None:
        self._health = list(health)
        self._init_status = init_status
        self._n_keys = n_keys
        self.health_calls = 0
        self.on_health_call: Optional[Callable[[], None]] = None
        self.init_calls: List[Dict[str, Any]] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        if request.method == "HEAD" and request.url.path == "/v1/sys/health":
            # Last scripted entry repeats forever
            item = self._health[min(self.health_calls, len(self._health) - 1)]
            self.health_calls += 1
            if self.on_health_call is not None:
                self.on_health_call()
            if isinstance(item, Exception):
                raise httpx.ConnectError(str(item), request=request)
            return httpx.Response(item)
        if request.method == "PUT" and request.url.path == "/v1/sys/init":
            self.init_calls.append(json.loads(request.content))
            if self._init_status != 200:
                return httpx.Response(self._init_status, json={"errors": ["nope"]})
            return httpx.Response(
                200,
                json={
                    "root_token": "s.root",
                    "recovery_keys": [f"key-{i}" for i in range(1, self._n_keys + 1)],
                    "recovery_keys_base64": [f"b64-{i}" for i in range(1, self._n_keys + 1)],
                },
            )
        return httpx.Response(404)

    def client(self) -> VaultClient:
        http = httpx.Client(base_url="https://vault.test", transport=httpx.MockTransport(self))
        return VaultClient("https://vault.test", client=http)


class _FakeSecretsManager:
    def __init__(self, *, fail_ids: Sequence[str] = ()) -> None:
        self.attempts: List[str] = []
        self.stored: Dict[str, str] = {}
        self._fail_ids = set(fail_ids)

    def put_secret_value(self, *, SecretId: str, SecretString: str):
        from botocore.exceptions import ClientError

        self.attempts.append(SecretId)
        if SecretId in self._fail_ids:
            raise ClientError({"Error": {"Code": "InternalServiceError"}}, "PutSecretValue")
        self.stored[SecretId] = SecretString
        return {"Name": SecretId, "VersionId": "v1"}


def _config() -> Config:
    return Config(
        root_token_secret_id=ROOT_ID,
        recovery_keys_secret_id=RECOVERY_ID,
        stored_shares=1,
        recovery_shares=5,
        recovery_threshold=3,
        check_interval=0.25,
    )


def _run(vault: _FakeVault, sm: _FakeSecretsManager, stop: _StopAfter) -> None:
    cfg = _config()
    client = vault.client()
    handler.run(
        cfg,
        monitor=HealthMonitor(client),
        initializer=Initializer(cfg, client, SecretsManagerStore(client=sm)),
        stop=stop,  # type: ignore[arg-type]
    )


def test_end_to_end_initializes_once(caplog: pytest.LogCaptureFixture):
    caplog.set_level(logging.INFO)
    vault = _FakeVault([501, 200])
    sm = _FakeSecretsManager()
    stop = _StopAfter(4)

    _run(vault, sm, stop)

    assert vault.health_calls == 4
    assert vault.init_calls == [{"stored_shares": 1, "recovery_shares": 5, "recovery_threshold": 3}]
    assert sm.attempts == [ROOT_ID, RECOVERY_ID]
    assert json.loads(sm.stored[ROOT_ID]) == {"root-token": "s.root"}
    recovery = json.loads(sm.stored[RECOVERY_ID])
    assert list(recovery) == [f"recovery-key-{i}" for i in range(1, 6)]
    assert list(recovery.values()) == [f"key-{i}" for i in range(1, 6)]

    messages = [r.getMessage() for r in caplog.records]
    done = messages.index("Initialization complete.")
    after = [m for m in messages[done + 1 :] if m.startswith("Vault ")]
    assert after == ["Vault is initialized and unsealed."] * 3
    assert messages[-1] == "Shutting down"
    assert stop.waits == [0.25] * 4


@pytest.mark.parametrize("code", [200, 429, 503])
def test_no_init_unless_uninitialized(code: int):
    vault = _FakeVault([code])
    sm = _FakeSecretsManager()

    _run(vault, sm, _StopAfter(3))

    assert vault.health_calls == 3
    assert vault.init_calls == []
    assert sm.attempts == []


def test_failed_init_is_retried_on_next_observation():
    vault = _FakeVault([501], init_status=500)
    sm = _FakeSecretsManager()

    _run(vault, sm, _StopAfter(3))

    # One attempt per "uninitialized" observation, no writes, loop keeps going
    assert len(vault.init_calls) == 3
    assert sm.attempts == []


def test_transport_errors_keep_polling(caplog: pytest.LogCaptureFixture):
    caplog.set_level(logging.INFO)
    vault = _FakeVault([RuntimeError("connection refused"), RuntimeError("connection refused"), 200])
    sm = _FakeSecretsManager()
    stop = _StopAfter(3)

    _run(vault, sm, stop)

    assert vault.health_calls == 3
    assert len(stop.waits) == 3
    assert vault.init_calls == []
    assert sum("Next check in" in r.getMessage() for r in caplog.records) == 1


def test_root_token_write_failure_stops_loop():
    vault = _FakeVault([501, 200])
    sm = _FakeSecretsManager(fail_ids=[ROOT_ID])
    stop = _StopAfter(5)

    with pytest.raises(CredentialPersistError):
        _run(vault, sm, stop)

    assert vault.health_calls == 1
    assert stop.waits == []
    assert sm.attempts == [ROOT_ID]


def test_recovery_write_failure_stops_loop_with_root_stored():
    vault = _FakeVault([501, 200])
    sm = _FakeSecretsManager(fail_ids=[RECOVERY_ID])

    with pytest.raises(CredentialPersistError):
        _run(vault, sm, _StopAfter(5))

    assert vault.health_calls == 1
    assert ROOT_ID in sm.stored
    assert RECOVERY_ID not in sm.stored


def test_stop_before_first_health_check():
    vault = _FakeVault([200])
    _run(vault, _FakeSecretsManager(), _StopAfter(0))
    assert vault.health_calls == 0


# ---------------- main() ----------------


def _patch_main(
    monkeypatch: pytest.MonkeyPatch,
    vault: _FakeVault,
    sm: _FakeSecretsManager,
) -> List[VaultClient]:
    created: List[VaultClient] = []

    def fake_vault_client(*_args: Any, **_kwargs: Any) -> VaultClient:
        client = vault.client()
        created.append(client)
        return client

    monkeypatch.setattr(handler, "VaultClient", fake_vault_client)
    monkeypatch.setattr(handler, "SecretsManagerStore", lambda **_kw: SecretsManagerStore(client=sm))
    monkeypatch.setattr(handler, "install_signal_handlers", lambda _stop: None)
    monkeypatch.setattr(handler, "configure_logging", lambda *_a: None)
    return created


def _set_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("ROOT_TOKEN_SECRET_ID", ROOT_ID)
    monkeypatch.setenv("RECOVERY_KEYS_SECRET_ID", RECOVERY_ID)
    monkeypatch.setenv("CHECK_INTERVAL", "10ms")


def test_main_missing_secret_id_never_contacts_vault(monkeypatch: pytest.MonkeyPatch):
    vault = _FakeVault([501])
    sm = _FakeSecretsManager()
    created = _patch_main(monkeypatch, vault, sm)
    monkeypatch.delenv("ROOT_TOKEN_SECRET_ID", raising=False)
    monkeypatch.setenv("RECOVERY_KEYS_SECRET_ID", RECOVERY_ID)

    assert handler.main() == handler.EXIT_FAILURE
    assert created == []
    assert vault.health_calls == 0
    assert sm.attempts == []


def test_main_malformed_interval_never_contacts_vault(monkeypatch: pytest.MonkeyPatch):
    vault = _FakeVault([501])
    created = _patch_main(monkeypatch, vault, _FakeSecretsManager())
    _set_env(monkeypatch)
    monkeypatch.setenv("CHECK_INTERVAL", "often")

    assert handler.main() == handler.EXIT_FAILURE
    assert created == []
    assert vault.health_calls == 0


@pytest.mark.parametrize(
    "name,value",
    [("CHECK_INTERVAL", "3000000h"), ("VAULT_ADDR", "http://[::1")],
)
def test_main_rejects_unusable_settings_before_contacting_vault(
    monkeypatch: pytest.MonkeyPatch, name: str, value: str
):
    vault = _FakeVault([501])
    sm = _FakeSecretsManager()
    created = _patch_main(monkeypatch, vault, sm)
    _set_env(monkeypatch)
    monkeypatch.setenv(name, value)

    assert handler.main() == handler.EXIT_FAILURE
    assert created == []
    assert vault.health_calls == 0
    assert vault.init_calls == []


def test_main_fatal_persist_error_exits_nonzero(monkeypatch: pytest.MonkeyPatch, caplog: pytest.LogCaptureFixture):
    caplog.set_level(logging.INFO)
    vault = _FakeVault([501])
    sm = _FakeSecretsManager(fail_ids=[ROOT_ID])
    _patch_main(monkeypatch, vault, sm)
    _set_env(monkeypatch)

    assert handler.main() == handler.EXIT_FAILURE
    assert len(vault.init_calls) == 1
    assert any(r.levelno == logging.CRITICAL for r in caplog.records)


def test_main_exits_cleanly_when_stopped(monkeypatch: pytest.MonkeyPatch):
    vault = _FakeVault([200])
    _patch_main(monkeypatch, vault, _FakeSecretsManager())
    _set_env(monkeypatch)

    captured: Dict[str, threading.Event] = {}
    monkeypatch.setattr(handler, "install_signal_handlers", lambda stop: captured.setdefault("stop", stop))
    # Simulate SIGTERM arriving while the first health check is in flight
    vault.on_health_call = lambda: captured["stop"].set()

    assert handler.main() == handler.EXIT_OK
    assert vault.health_calls == 1


def test_signal_handlers_set_stop_event():
    stop = threading.Event()
    previous = {sig: signal.getsignal(sig) for sig in (signal.SIGINT, signal.SIGTERM)}
    try:
        handler.install_signal_handlers(stop)
        signal.raise_signal(signal.SIGTERM)
        assert stop.wait(1.0)
    finally:
        for sig, prev in previous.items():
            signal.signal(sig, prev)
