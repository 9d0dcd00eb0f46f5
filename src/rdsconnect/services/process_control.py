"""Single-instance lock and background launch for the renewal daemon."""

import fcntl
import os
import signal
import subprocess
import sys
import time
from typing import Callable, List, Optional

from rdsconnect.constants import DAEMON_STOP_GRACE_SECONDS
from rdsconnect.errors import ConnectError


def is_alive(pid: int) -> bool:
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        return True
    return True


class DaemonLock:
    """PID file guarded by an exclusive ``flock``.

    The kernel drops the lock when its holder exits, so a PID file left by
    a crashed daemon never blocks a new one.
    """

    def __init__(self, path: str, logger, grace_seconds: float = DAEMON_STOP_GRACE_SECONDS):
        self.path = path
        self.logger = logger
        self.grace_seconds = grace_seconds
        self._handle = None

    def _open(self):
        os.makedirs(os.path.dirname(os.path.abspath(self.path)), exist_ok=True)
        return open(self.path, "a+", encoding="utf-8")

    @staticmethod
    def _try_lock(handle) -> bool:
        try:
            fcntl.flock(handle.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
        except BlockingIOError:
            return False
        return True

    def read_pid(self) -> Optional[int]:
        try:
            with open(self.path, "r", encoding="utf-8") as file_obj:
                content = file_obj.read().strip()
        except FileNotFoundError:
            return None
        try:
            return int(content) if content else None
        except ValueError:
            return None

    def holder_pid(self) -> Optional[int]:
        """PID of the live lock holder, or None when nobody holds the lock."""
        if self._handle is not None:
            return os.getpid()
        if not os.path.exists(self.path):
            return None

        with self._open() as handle:
            if self._try_lock(handle):
                fcntl.flock(handle.fileno(), fcntl.LOCK_UN)
                return None

        # the holder writes its PID right after locking
        for _ in range(10):
            pid = self.read_pid()
            if pid is not None:
                return pid if is_alive(pid) else None
            time.sleep(0.1)
        return None

    def terminate(self, pid: int):
        self.logger.info("Found and stopping previous daemon instance with PID: %s", pid)
        try:
            os.kill(pid, signal.SIGTERM)
        except ProcessLookupError:
            return

        deadline = time.monotonic() + self.grace_seconds
        while time.monotonic() < deadline:
            if not is_alive(pid):
                return
            time.sleep(0.1)

        self.logger.warning("Daemon PID %s ignored SIGTERM; sending SIGKILL.", pid)
        try:
            os.kill(pid, signal.SIGKILL)
        except ProcessLookupError:
            pass

    def _stop_holder(self) -> bool:
        pid = self.read_pid()
        if pid is None or pid == os.getpid():
            return False
        self.terminate(pid)
        return True

    def acquire(self):
        """Take the lock, stopping whichever process currently holds it."""
        handle = self._open()
        try:
            if not self._try_lock(handle):
                stopped = self._stop_holder()
                deadline = time.monotonic() + self.grace_seconds * 2
                while not self._try_lock(handle):
                    # a holder still starting up may not have written its PID yet
                    if not stopped and self._stop_holder():
                        stopped = True
                        deadline = time.monotonic() + self.grace_seconds * 2
                    if time.monotonic() >= deadline:
                        raise ConnectError(
                            f"Could not acquire daemon lock {self.path}; another instance is still running."
                        )
                    time.sleep(0.1)

            handle.seek(0)
            handle.truncate()
            handle.write(f"{os.getpid()}\n")
            handle.flush()
        except BaseException:
            handle.close()
            raise

        self._handle = handle
        self.logger.debug("Acquired daemon lock %s", self.path)

    def release(self):
        if self._handle is None:
            return

        try:
            self._handle.seek(0)
            self._handle.truncate()
            self._handle.flush()
        except OSError as exc:
            self.logger.debug("Could not clear lock file %s: %s", self.path, exc)
        finally:
            fcntl.flock(self._handle.fileno(), fcntl.LOCK_UN)
            self._handle.close()
            self._handle = None


class DaemonLauncher:
    """Starts and stops the detached renewal daemon process."""

    def __init__(
        self,
        lock: DaemonLock,
        logger,
        config_path: Optional[str] = None,
        popen: Callable = subprocess.Popen,
        python_executable: str = sys.executable,
    ):
        self.lock = lock
        self.logger = logger
        self.config_path = config_path
        self.popen = popen
        self.python_executable = python_executable

    def command(self) -> List[str]:
        cmd = [self.python_executable, "-m", "rdsconnect"]
        if self.config_path:
            cmd.extend(["--config", os.path.abspath(os.path.expanduser(self.config_path))])
        cmd.append("daemon")
        return cmd

    def ensure_running(self) -> int:
        pid = self.lock.holder_pid()
        if pid is not None:
            self.logger.info("Renewal daemon already running with PID: %s", pid)
            return pid

        cmd = self.command()
        self.logger.debug("Launching renewal daemon: %s", " ".join(cmd))
        try:
            process = self.popen(
                cmd,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.DEVNULL,
                start_new_session=True,
                close_fds=True,
            )
        except OSError as exc:
            raise ConnectError(f"Failed to launch renewal daemon: {exc}") from exc

        self.logger.info("Renewal daemon started with PID: %s", process.pid)
        return process.pid

    def stop(self) -> Optional[int]:
        pid = self.lock.holder_pid()
        if pid is None:
            return None
        try:
            os.kill(pid, signal.SIGTERM)
        except ProcessLookupError:
            return None
        return pid
