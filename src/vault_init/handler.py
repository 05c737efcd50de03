from __future__ import annotations

import logging
import os
import signal
import threading
from typing import Any, Optional

from botocore.exceptions import BotoCoreError

from .common.config import Config, ConfigError, format_duration
from .common.vault import VaultClient
from .store.secrets_manager import SecretsManagerStore

from .initializer import CredentialPersistError, Initializer
from .monitor import HealthMonitor


logger = logging.getLogger(__name__)

ENV_LOG_LEVEL = "LOG_LEVEL"
LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"

EXIT_OK = 0
EXIT_FAILURE = 1


def configure_logging(level: Optional[str] = None) -> None:
    name = (level or os.environ.get(ENV_LOG_LEVEL) or "INFO").upper()
    logging.basicConfig(level=getattr(logging, name, logging.INFO), format=LOG_FORMAT)
    # httpx logs every request at INFO; one health check per interval is noise
    logging.getLogger("httpx").setLevel(logging.WARNING)


def install_signal_handlers(stop: threading.Event) -> None:
    """Set `stop` on SIGINT/SIGTERM. Must be called from the main thread."""

    def _handle(signum: int, _frame: Any) -> None:
        logger.info("Received %s", signal.Signals(signum).name)
        stop.set()

    for sig in (signal.SIGINT, signal.SIGTERM):
        signal.signal(sig, _handle)


def run(
    config: Config,
    *,
    monitor: HealthMonitor,
    initializer: Initializer,
    stop: threading.Event,
) -> None:
    """
    Poll → classify → (maybe initialize) → sleep, until `stop` is set.

    - `stop` is checked before every health check and waited on between checks, so a
      signal interrupts the sleep immediately.
    - Initialization runs synchronously inside the cycle; a stop requested
      meanwhile is honoured once the attempt finishes.
    - CredentialPersistError propagates to the caller.
    """
    interval = format_duration(config.check_interval)
    while not stop.is_set():
        status = monitor.poll()
        if status is not None:
            if status.needs_init:
                initializer.run()
            logger.info("Next check in %s", interval)

        if stop.wait(config.check_interval):
            break

    logger.info("Shutting down")


def main() -> int:
    configure_logging()
    logger.info("Starting the vault-init service...")

    try:
        config = Config.from_env()
    except ConfigError as e:
        logger.critical("%s", e)
        return EXIT_FAILURE

    if config.insecure_skip_verify:
        logger.warning("TLS certificate verification is disabled for %s", config.vault_addr)

    try:
        store = SecretsManagerStore()
    except BotoCoreError as e:
        # e.g. no region resolvable; fail before touching Vault
        logger.critical("Cannot create Secrets Manager client: %s", e)
        return EXIT_FAILURE

    stop = threading.Event()
    install_signal_handlers(stop)

    with VaultClient(
        config.vault_addr,
        insecure_skip_verify=config.insecure_skip_verify,
        timeout=config.http_timeout,
    ) as vault:
        monitor = HealthMonitor(vault)
        initializer = Initializer(config, vault, store)
        try:
            run(config, monitor=monitor, initializer=initializer, stop=stop)
        except CredentialPersistError as e:
            logger.critical("%s", e)
            logger.critical(
                "Vault is initialized and will not reissue these credentials; "
                "manual remediation is required."
            )
            return EXIT_FAILURE

    return EXIT_OK
