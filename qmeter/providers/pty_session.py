from __future__ import annotations

import logging
import os
import select
import struct
import subprocess
from collections.abc import Mapping, Sequence
from pathlib import Path

import psutil

logger = logging.getLogger("qmeter.providers.pty")

DEFAULT_COLS = 140
DEFAULT_ROWS = 40
MAX_BUFFER_BYTES = 600_000
READ_CHUNK = 65_536


def terminate_process_tree(pid: int, grace_seconds: float = 1.0) -> None:
    try:
        parent = psutil.Process(pid)
    except psutil.NoSuchProcess:
        return
    try:
        procs = parent.children(recursive=True)
    except (psutil.NoSuchProcess, psutil.AccessDenied):
        procs = []
    procs.append(parent)
    for proc in procs:
        try:
            proc.terminate()
        except (psutil.NoSuchProcess, psutil.AccessDenied):
            continue
    _, alive = psutil.wait_procs(procs, timeout=grace_seconds)
    for proc in alive:
        try:
            proc.kill()
        except (psutil.NoSuchProcess, psutil.AccessDenied):
            continue


class PtySession:
    """Child process attached to a pseudo-terminal, with bounded output capture."""

    def __init__(
        self,
        argv: Sequence[str],
        cols: int = DEFAULT_COLS,
        rows: int = DEFAULT_ROWS,
        max_buffer: int = MAX_BUFFER_BYTES,
        env: Mapping[str, str] | None = None,
        cwd: Path | None = None,
    ) -> None:
        self.argv = list(argv)
        self.cols = cols
        self.rows = rows
        self.max_buffer = max_buffer
        self.env = dict(env if env is not None else os.environ)
        self.env.setdefault("TERM", "xterm-color")
        self.cwd = cwd or Path.cwd()
        self._buffer = bytearray()
        self._master_fd: int | None = None
        self._proc: subprocess.Popen[bytes] | None = None
        self._eof = False

    def start(self) -> None:
        """Spawn the child; raises ``OSError`` if the PTY or process cannot be created."""
        if os.name == "nt":
            raise OSError("pseudo-terminals are not supported on this platform")
        import fcntl
        import pty
        import termios

        master_fd, slave_fd = pty.openpty()
        try:
            fcntl.ioctl(slave_fd, termios.TIOCSWINSZ, struct.pack("HHHH", self.rows, self.cols, 0, 0))
            self._proc = subprocess.Popen(
                self.argv,
                stdin=slave_fd,
                stdout=slave_fd,
                stderr=slave_fd,
                cwd=self.cwd,
                env=self.env,
                start_new_session=True,
                close_fds=True,
            )
        except OSError:
            os.close(master_fd)
            raise
        finally:
            os.close(slave_fd)
        self._master_fd = master_fd
        logger.debug("pty session started pid=%s argv=%s", self._proc.pid, self.argv[:1])

    @property
    def eof(self) -> bool:
        return self._eof

    def text(self) -> str:
        return self._buffer.decode("utf-8", errors="replace")

    def _append(self, data: bytes) -> None:
        self._buffer.extend(data)
        overflow = len(self._buffer) - self.max_buffer
        if overflow > 0:
            del self._buffer[:overflow]

    def pump(self, timeout: float) -> None:
        """Read whatever output arrives within ``timeout`` seconds."""
        if self._master_fd is None or self._eof:
            return
        try:
            readable, _, _ = select.select([self._master_fd], [], [], max(0.0, timeout))
        except (OSError, ValueError):
            self._eof = True
            return
        if not readable:
            return
        try:
            data = os.read(self._master_fd, READ_CHUNK)
        except OSError:
            # Linux reports EIO once the child side of the terminal is gone.
            self._eof = True
            return
        if not data:
            self._eof = True
            return
        self._append(data)

    def write(self, text: str) -> None:
        if self._master_fd is None:
            return
        try:
            os.write(self._master_fd, text.encode("utf-8"))
        except OSError as exc:
            logger.debug("pty write failed: %s", exc)

    def close(self) -> None:
        if self._proc is not None:
            if self._proc.poll() is None:
                terminate_process_tree(self._proc.pid)
            try:
                self._proc.wait(timeout=2)
            except subprocess.TimeoutExpired:
                logger.warning("pty child pid=%s did not exit after kill", self._proc.pid)
        if self._master_fd is not None:
            try:
                os.close(self._master_fd)
            except OSError:
                pass
            self._master_fd = None
