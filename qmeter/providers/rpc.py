from __future__ import annotations

import json
import logging
import subprocess
import threading
from collections import deque
from collections.abc import Mapping, Sequence
from concurrent.futures import Future
from typing import Any

from pydantic import BaseModel, ConfigDict, ValidationError

from qmeter.providers.pty_session import terminate_process_tree

logger = logging.getLogger("qmeter.providers.rpc")

STDERR_TAIL_LINES = 20


class RpcErrorPayload(BaseModel):
    code: int
    message: str
    data: Any = None


class RpcResponse(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: int | str
    result: Any = None
    error: RpcErrorPayload | None = None


class RpcError(Exception):
    """The peer answered a request with an error object."""

    def __init__(self, code: int, message: str) -> None:
        super().__init__(message)
        self.code = code


class RpcConnectionClosed(ConnectionError):
    """The peer exited or closed its stdout before answering."""


class JsonRpcProcess:
    """Line-delimited JSON-RPC over a child process's stdin/stdout."""

    def __init__(
        self,
        args: Sequence[str] | str,
        shell: bool = False,
        env: Mapping[str, str] | None = None,
    ) -> None:
        self.args = args
        self.shell = shell
        self.env = dict(env) if env is not None else None
        self._proc: subprocess.Popen[str] | None = None
        self._pending: dict[int | str, Future[Any]] = {}
        self._lock = threading.Lock()
        self._stderr_tail: deque[str] = deque(maxlen=STDERR_TAIL_LINES)
        self._closed = False
        self._stderr_thread: threading.Thread | None = None

    def start(self) -> None:
        self._proc = subprocess.Popen(
            self.args,
            shell=self.shell,
            stdin=subprocess.PIPE,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            text=True,
            encoding="utf-8",
            errors="replace",
            bufsize=1,
            env=self.env,
        )
        self._stderr_thread = threading.Thread(target=self._read_stderr, name="rpc-stderr", daemon=True)
        self._stderr_thread.start()
        threading.Thread(target=self._read_stdout, name="rpc-stdout", daemon=True).start()

    def stderr_tail(self) -> str:
        return " | ".join(line for line in self._stderr_tail if line)

    def _read_stderr(self) -> None:
        assert self._proc is not None and self._proc.stderr is not None
        for line in self._proc.stderr:
            self._stderr_tail.append(line.strip())

    def _read_stdout(self) -> None:
        assert self._proc is not None and self._proc.stdout is not None
        for line in self._proc.stdout:
            self._handle_line(line)
        self._fail_pending()

    def _handle_line(self, line: str) -> None:
        text = line.strip()
        if not text:
            return
        try:
            payload = json.loads(text)
        except json.JSONDecodeError:
            return
        if not isinstance(payload, dict) or "id" not in payload:
            return
        try:
            response = RpcResponse.model_validate(payload)
        except ValidationError:
            return
        with self._lock:
            future = self._pending.pop(response.id, None)
        if future is None:
            return
        if response.error is not None:
            future.set_exception(RpcError(response.error.code, response.error.message))
        else:
            future.set_result(response.result)

    def _fail_pending(self) -> None:
        if self._stderr_thread is not None:
            self._stderr_thread.join(timeout=0.5)
        with self._lock:
            pending = list(self._pending.values())
            self._pending.clear()
        if not pending:
            return
        detail = self.stderr_tail()
        message = "app-server exited before replying"
        if detail:
            message = f"{message}: {detail}"
        for future in pending:
            if not future.done():
                future.set_exception(RpcConnectionClosed(message))

    def _send(self, message: dict[str, Any]) -> None:
        if self._proc is None or self._proc.stdin is None:
            raise RpcConnectionClosed("app-server is not running")
        try:
            self._proc.stdin.write(json.dumps(message, separators=(",", ":")) + "\n")
            self._proc.stdin.flush()
        except (BrokenPipeError, OSError, ValueError) as exc:
            raise RpcConnectionClosed(f"app-server stdin closed: {exc}") from exc

    def request(self, method: str, request_id: int, params: Any = None) -> Future[Any]:
        future: Future[Any] = Future()
        with self._lock:
            self._pending[request_id] = future
        message: dict[str, Any] = {"method": method, "id": request_id}
        if params is not None:
            message["params"] = params
        try:
            self._send(message)
        except RpcConnectionClosed as exc:
            with self._lock:
                self._pending.pop(request_id, None)
            future.set_exception(exc)
        return future

    def notify(self, method: str, params: Any = None) -> None:
        message: dict[str, Any] = {"method": method}
        if params is not None:
            message["params"] = params
        try:
            self._send(message)
        except RpcConnectionClosed as exc:
            logger.debug("notification %s not delivered: %s", method, exc)

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        proc = self._proc
        if proc is None:
            return
        if proc.stdin is not None:
            try:
                proc.stdin.close()
            except OSError:
                logger.debug("app-server stdin already closed")
        if proc.poll() is None:
            terminate_process_tree(proc.pid)
        try:
            proc.wait(timeout=2)
        except subprocess.TimeoutExpired:
            logger.warning("app-server pid=%s did not exit after kill", proc.pid)
        with self._lock:
            pending = list(self._pending.values())
            self._pending.clear()
        for future in pending:
            if not future.done():
                future.cancel()
