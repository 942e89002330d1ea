"""
Correlated request/response channel to the native helper.

Messages are newline-terminated UTF-8 JSON documents. Requests carry a unique
``id`` and are answered by a response with the same ``id``; unsolicited events
carry an ``event`` name and are fanned out to registered listeners.
"""

import asyncio
import inspect
import json
import math
import uuid
from collections import defaultdict
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set

from ..interfaces import (
    EventListener,
    ProtocolError,
    RemoteActionError,
    RequestTimeout,
    ServiceUnavailable,
)
from ..logging_config import get_logger, log_ipc_message

DEFAULT_TIMEOUT_MS = 10000

# Pass as ``timeout_ms`` to wait for a response indefinitely
NO_TIMEOUT = math.inf

EXIT_EVENT = "exit"
ERROR_EVENT = "error"

ExitStatus = Callable[[], Awaitable[Optional[int]]]


class _PendingRequest:
    """A request waiting for its response."""

    def __init__(self, method: str, future: asyncio.Future,
                 timer: Optional[asyncio.TimerHandle]):
        self.method = method
        self.future = future
        self.timer = timer

    def cancel_timer(self) -> None:
        if self.timer is not None:
            self.timer.cancel()
            self.timer = None


class MessageChannel:
    """Bidirectional JSON-lines channel with request correlation and events."""

    def __init__(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter,
                 default_timeout_ms: float = DEFAULT_TIMEOUT_MS,
                 exit_status: Optional[ExitStatus] = None):
        """
        Initialize the channel.

        Args:
            reader: Stream the helper writes to
            writer: Stream the helper reads from
            default_timeout_ms: Timeout for requests that do not specify one
            exit_status: Optional coroutine function returning the helper exit
                code once the stream has closed
        """
        self._reader = reader
        self._writer = writer
        self.default_timeout_ms = default_timeout_ms
        self._exit_status = exit_status
        self.logger = get_logger(__name__)

        self._pending: Dict[str, _PendingRequest] = {}
        self._listeners: Dict[str, List[EventListener]] = defaultdict(list)
        self._listener_tasks: Set[asyncio.Task] = set()
        self._reader_task: Optional[asyncio.Task] = None
        self._closed = False

        # Statistics
        self.protocol_error_count = 0
        self.late_response_count = 0

    # Lifecycle

    def start(self) -> None:
        """Start the reader task. Must be called from a running event loop."""
        if self._reader_task is not None:
            raise RuntimeError("MessageChannel is already started")
        self._reader_task = asyncio.get_running_loop().create_task(self._read_loop())

    @property
    def is_running(self) -> bool:
        return self._reader_task is not None and not self._closed

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    async def close(self, exit_code: Optional[int] = None) -> None:
        """Close the transport and fail every pending request."""
        self._shutdown(exit_code)

        if self._reader_task is not None and self._reader_task is not asyncio.current_task():
            self._reader_task.cancel()
            try:
                await self._reader_task
            except asyncio.CancelledError:
                pass

        if not self._writer.is_closing():
            self._writer.close()
        try:
            await self._writer.wait_closed()
        except (ConnectionError, OSError) as e:
            self.logger.debug(f"Error while closing channel writer: {e}")

    # Requests

    async def request(self, method: str, params: Optional[Dict[str, Any]] = None,
                      timeout_ms: Optional[float] = None) -> Any:
        """
        Send a request and wait for the matching response.

        Args:
            method: Helper method name
            params: Optional parameters; keys with None values are omitted
            timeout_ms: Response timeout, default_timeout_ms if None,
                NO_TIMEOUT to wait indefinitely

        Returns:
            The ``result`` of the success response (None if absent)

        Raises:
            RemoteActionError: If the helper answered with ``success: false``
            RequestTimeout: If no response arrived in time
            ServiceUnavailable: If the channel is closed
        """
        if self._closed:
            raise ServiceUnavailable("Native helper is not running")

        request_id = uuid.uuid4().hex
        message: Dict[str, Any] = {"id": request_id, "method": method}
        if params is not None:
            message["params"] = {k: v for k, v in params.items() if v is not None}

        if timeout_ms is None:
            timeout_ms = self.default_timeout_ms

        loop = asyncio.get_running_loop()
        future = loop.create_future()
        timer = None
        if not math.isinf(timeout_ms):
            timer = loop.call_later(timeout_ms / 1000, self._expire, request_id, timeout_ms)
        self._pending[request_id] = _PendingRequest(method, future, timer)

        try:
            try:
                await self._send(message)
            except ServiceUnavailable:
                # The shutdown already failed this future; mark it retrieved
                if future.done() and not future.cancelled():
                    future.exception()
                raise
            return await future
        finally:
            pending = self._pending.pop(request_id, None)
            if pending is not None:
                pending.cancel_timer()

    def _expire(self, request_id: str, timeout_ms: float) -> None:
        pending = self._pending.pop(request_id, None)
        if pending is None or pending.future.done():
            return
        self.logger.warning(f"Request {pending.method} ({request_id}) timed out after {timeout_ms:.0f}ms")
        pending.future.set_exception(RequestTimeout(pending.method, timeout_ms))

    async def _send(self, message: Dict[str, Any]) -> None:
        line = json.dumps(message, separators=(",", ":"), ensure_ascii=False) + "\n"
        log_ipc_message(self.logger, "send", message)
        try:
            self._writer.write(line.encode("utf-8"))
            await self._writer.drain()
        except (ConnectionError, OSError) as e:
            self.logger.error(f"Failed to write to native helper: {e}")
            self._shutdown(None)
            raise ServiceUnavailable(f"Native helper is not reachable: {e}") from e

    # Events

    def on(self, event: str, listener: EventListener) -> None:
        """Register a listener for an event type."""
        if listener not in self._listeners[event]:
            self._listeners[event].append(listener)

    def off(self, event: str, listener: EventListener) -> None:
        """Remove a listener for an event type."""
        listeners = self._listeners.get(event)
        if listeners and listener in listeners:
            listeners.remove(listener)

    def listener_count(self, event: str) -> int:
        return len(self._listeners.get(event, ()))

    def _emit(self, event: str, data: Dict[str, Any]) -> None:
        for listener in list(self._listeners.get(event, ())):
            try:
                result = listener(data)
                if inspect.isawaitable(result):
                    task = asyncio.ensure_future(result)
                    self._listener_tasks.add(task)
                    task.add_done_callback(self._on_listener_done)
            except Exception:
                self.logger.exception(f"Error in event listener for {event}")

    def _on_listener_done(self, task: asyncio.Task) -> None:
        self._listener_tasks.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            self.logger.error("Error in async event listener", exc_info=error)

    async def wait_for_listeners(self) -> None:
        """Wait until every scheduled async listener has finished."""
        while self._listener_tasks:
            await asyncio.gather(*list(self._listener_tasks), return_exceptions=True)

    # Inbound

    async def _read_loop(self) -> None:
        try:
            while True:
                try:
                    line = await self._reader.readline()
                except ValueError as e:
                    # Line exceeded the stream limit; the reader drops it
                    self._protocol_error(f"Oversized message discarded: {e}")
                    continue

                if not line:
                    break
                self._handle_line(line)

        except (ConnectionError, OSError) as e:
            self.logger.error(f"Native helper stream failed: {e}")
            self._emit(ERROR_EVENT, {"error": str(e)})

        exit_code = None
        if self._exit_status is not None and not self._closed:
            try:
                exit_code = await asyncio.wait_for(self._exit_status(), timeout=5)
            except asyncio.TimeoutError:
                self.logger.warning("Native helper closed its output but did not exit")
        self._shutdown(exit_code)

    def _handle_line(self, raw: bytes) -> None:
        try:
            text = raw.decode("utf-8").strip()
        except UnicodeDecodeError as e:
            self._protocol_error(f"Invalid UTF-8 in message: {e}")
            return

        if not text:
            return

        try:
            message = json.loads(text)
        except json.JSONDecodeError:
            self._protocol_error(f"Failed to parse message: {text[:200]}")
            return

        if not isinstance(message, dict):
            self._protocol_error(f"Unknown message format: {text[:200]}")
            return

        log_ipc_message(self.logger, "recv", message)

        if "id" in message and "success" in message:
            self._handle_response(message)
        elif "event" in message:
            self._handle_event(message)
        else:
            self._protocol_error(f"Unknown message format: {text[:200]}")

    def _handle_response(self, message: Dict[str, Any]) -> None:
        request_id = message["id"]
        pending = self._pending.pop(request_id, None) if isinstance(request_id, str) else None
        if pending is None:
            self.late_response_count += 1
            self.logger.warning(f"Dropping response for unknown or expired request: {request_id}")
            return

        pending.cancel_timer()
        if pending.future.done():
            return

        if message["success"] is True:
            pending.future.set_result(message.get("result"))
        else:
            error = message.get("error") or "Unknown helper error"
            pending.future.set_exception(RemoteActionError(pending.method, str(error)))

    def _handle_event(self, message: Dict[str, Any]) -> None:
        event = message["event"]
        data = message.get("data")
        if not isinstance(event, str) or not (data is None or isinstance(data, dict)):
            self._protocol_error(f"Malformed event: {message!r}")
            return
        self._emit(event, data or {})

    def _protocol_error(self, detail: str) -> None:
        self.protocol_error_count += 1
        self.logger.warning(str(ProtocolError(detail)))

    # Termination

    def _shutdown(self, exit_code: Optional[int]) -> None:
        if self._closed:
            return
        self._closed = True

        pending = list(self._pending.values())
        self._pending.clear()
        for request in pending:
            request.cancel_timer()
            if not request.future.done():
                request.future.set_exception(
                    ServiceUnavailable(f"Native helper exited (code {exit_code})")
                )

        if pending:
            self.logger.warning(f"Rejected {len(pending)} pending request(s): native helper unavailable")
        self.logger.info(f"Message channel closed (exit code {exit_code})")
        self._emit(EXIT_EVENT, {"code": exit_code})
