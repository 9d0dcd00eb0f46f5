"""Background renewal of the short-lived credential token."""

import os
import signal
import threading
import time
from enum import Enum
from typing import Callable, Optional

from botocore.exceptions import BotoCoreError, ClientError

from rdsconnect.constants import EXIT_OK
from rdsconnect.errors import ConnectError, CorruptCredentialFileError, RenewalError
from rdsconnect.errors_catalog import actionable_error
from rdsconnect.models import Classification, Credential


class DaemonState(str, Enum):
    STARTING = "STARTING"
    WAITING = "WAITING"
    REFRESHING = "REFRESHING"
    VERIFYING = "VERIFYING"
    ERROR_BACKOFF = "ERROR_BACKOFF"
    STOPPED = "STOPPED"


def compute_deadline(last_modified: float, lifetime_seconds: float, margin_seconds: float) -> float:
    """Epoch second at which a token written at ``last_modified`` must be renewed."""
    return last_modified + (lifetime_seconds - margin_seconds)


class TokenRefresher:
    """Mints a fresh token for the current credential file and rotates it in place.

    Host, region, username and profile are re-read from the file on every
    call; the selector is never re-resolved.
    """

    def __init__(self, credential_store, gateway_factory: Callable, settings, logger, clock=time.time):
        self.credential_store = credential_store
        self.gateway_factory = gateway_factory
        self.settings = settings
        self.logger = logger
        self.clock = clock

    def refresh(self) -> Credential:
        credential = self.credential_store.read()
        self.logger.info(
            "Refreshing token for %s@%s (%s, profile %s)",
            credential.username,
            credential.host,
            credential.region,
            credential.identity_context,
        )
        gateway = self.gateway_factory(credential.identity_context)
        token = gateway.generate_auth_token(
            credential.host,
            self.settings.db_port,
            credential.username,
            credential.region,
        )
        return self.credential_store.rotate(token, int(self.clock()), expected=credential)


class RenewalDaemon:
    """Single-instance loop keeping the credential file's token valid."""

    def __init__(
        self,
        refresher: TokenRefresher,
        credential_store,
        lock,
        settings,
        logger,
        status_service=None,
        classifier=None,
        clock=time.time,
        stop_event: Optional[threading.Event] = None,
    ):
        self.refresher = refresher
        self.credential_store = credential_store
        self.lock = lock
        self.settings = settings
        self.logger = logger
        self.status_service = status_service
        self.classifier = classifier
        self.clock = clock
        self.stop_event = stop_event or threading.Event()
        self.state: Optional[DaemonState] = None

    def stop(self):
        self.logger.info("Stop requested, shutting down.")
        self.stop_event.set()

    def install_signal_handlers(self):
        def _handle(signum, _frame):
            # Event.set takes a lock the interrupted wait may still hold
            threading.Thread(target=self.stop, name="renewal-stop", daemon=True).start()

        signal.signal(signal.SIGTERM, _handle)
        signal.signal(signal.SIGINT, _handle)

    def _transition(self, state: DaemonState, **fields):
        self.state = state
        self.logger.debug("State: %s", state.value)
        if self.status_service is not None:
            self.status_service.mark_state(state.value, **fields)

    def _format(self, epoch: float) -> str:
        return time.strftime("%Y-%m-%d %H:%M:%S", time.localtime(epoch))

    def _wait_until(self, deadline: float) -> bool:
        """Sleep until ``deadline``; True when a stop was requested meanwhile."""
        remaining = deadline - self.clock()
        if remaining <= 0:
            return self.stop_event.is_set()
        return self.stop_event.wait(remaining)

    def _require_mtime(self) -> int:
        modified = self.credential_store.modified_time_ns()
        if modified is None:
            raise CorruptCredentialFileError(
                actionable_error("credential_file_missing", path=self.credential_store.path)
            )
        return modified

    def run(self) -> int:
        self.state = DaemonState.STARTING
        self.lock.acquire()
        self.logger.info("Starting renewal daemon with PID: %s", os.getpid())
        if self.status_service is not None:
            self.status_service.initialize(os.getpid())
        self._transition(DaemonState.STARTING)

        exit_code = EXIT_OK
        try:
            while not self.stop_event.is_set():
                self.run_cycle()
        except CorruptCredentialFileError as exc:
            self.logger.error("Nothing to renew: %s", exc)
            if self.status_service is not None:
                self.status_service.mark_error(str(exc))
            exit_code = exc.exit_code
        finally:
            self._transition(DaemonState.STOPPED)
            self.lock.release()
            self.logger.info("Renewal daemon stopped.")

        return exit_code

    def run_cycle(self):
        """One WAITING → REFRESHING → VERIFYING pass (or a backoff)."""
        last_modified_ns = self._require_mtime()
        last_modified = last_modified_ns / 1_000_000_000
        deadline = compute_deadline(
            last_modified,
            self.settings.token_lifetime_seconds,
            self.settings.safety_margin_minutes * 60,
        )

        self._transition(
            DaemonState.WAITING,
            next_refresh_at=self._iso(deadline),
        )
        self.logger.info(
            "Token created at: %s. Next refresh scheduled for: %s.",
            self._format(last_modified),
            self._format(deadline),
        )
        if deadline <= self.clock():
            self.logger.info("Token is past its refresh point. Refreshing immediately.")
        if self._wait_until(deadline):
            return

        self._transition(DaemonState.REFRESHING)
        try:
            credential = self.refresher.refresh()
        except CorruptCredentialFileError:
            raise
        except (ConnectError, BotoCoreError, ClientError, OSError) as exc:
            self._backoff(exc)
            return

        self._transition(DaemonState.VERIFYING)
        current_ns = self.credential_store.modified_time_ns()
        if current_ns is None or current_ns <= last_modified_ns:
            self._backoff(RenewalError(f"{self.credential_store.path} was not updated by the refresh."))
            return

        if self.status_service is not None:
            self.status_service.mark_refreshed(credential.issued_at)
        self.logger.info("Token file has been successfully updated. Restarting monitoring cycle.")

        if self.settings.monitor_role and self.classifier is not None:
            self._monitor_role(credential)

    def _monitor_role(self, credential: Credential):
        classification = self.classifier.classify(credential)
        if self.status_service is not None:
            self.status_service.mark_state(self.state.value, classification=classification.value)
        if classification == Classification.WRITER:
            self.logger.warning("Credential for %s now points at a WRITER instance.", credential.host)

    def _backoff(self, exc: Exception):
        self._transition(DaemonState.ERROR_BACKOFF, last_error=str(exc))
        self.logger.error(
            "Token refresh failed: %s. Retrying in %.0fs.",
            exc,
            self.settings.retry_backoff_seconds,
        )
        self.stop_event.wait(self.settings.retry_backoff_seconds)

    def _iso(self, epoch: float) -> str:
        if self.status_service is not None:
            return self.status_service.format_epoch(epoch)
        return str(epoch)
