"""Native helper process lifecycle."""

import asyncio
from pathlib import Path
from typing import List, Optional

from ..interfaces import ServiceError
from ..logging_config import get_logger
from .channel import DEFAULT_TIMEOUT_MS, MessageChannel
from .protocol import NativeActionClient

# Stream buffer limit for one JSON line from the helper
STREAM_LIMIT = 1024 * 1024

STOP_TIMEOUT_S = 5.0


class HelperProcess:
    """Spawns the native helper and connects a MessageChannel to its stdio."""

    def __init__(self, helper_path: Path, request_timeout_ms: float = DEFAULT_TIMEOUT_MS,
                 args: Optional[List[str]] = None):
        """
        Initialize the helper process wrapper.

        Args:
            helper_path: Path to the helper executable
            request_timeout_ms: Default request timeout for the channel
            args: Extra command line arguments for the helper
        """
        self.helper_path = Path(helper_path)
        self.request_timeout_ms = request_timeout_ms
        self.args = list(args or [])
        self.logger = get_logger(__name__)

        self._process: Optional[asyncio.subprocess.Process] = None
        self._channel: Optional[MessageChannel] = None
        self._stderr_task: Optional[asyncio.Task] = None

    @property
    def is_running(self) -> bool:
        return self._process is not None and self._process.returncode is None

    @property
    def pid(self) -> Optional[int]:
        return self._process.pid if self._process is not None else None

    @property
    def channel(self) -> MessageChannel:
        if self._channel is None:
            raise ServiceError("Native helper is not started")
        return self._channel

    @property
    def client(self) -> NativeActionClient:
        return NativeActionClient(self.channel)

    async def start(self) -> NativeActionClient:
        """
        Launch the helper.

        Returns:
            Client bound to the helper's channel

        Raises:
            ServiceError: If the helper is already running or cannot be launched
        """
        if self.is_running:
            raise ServiceError("Native helper is already running")

        self.logger.info(f"Starting native helper: {self.helper_path}")
        try:
            self._process = await asyncio.create_subprocess_exec(
                str(self.helper_path), *self.args,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                limit=STREAM_LIMIT,
            )
        except OSError as e:
            raise ServiceError(f"Failed to launch native helper {self.helper_path}: {e}") from e

        self._channel = MessageChannel(
            self._process.stdout,
            self._process.stdin,
            default_timeout_ms=self.request_timeout_ms,
            exit_status=self._process.wait,
        )
        self._channel.on("exit", self._on_exit)
        self._channel.start()
        self._stderr_task = asyncio.get_running_loop().create_task(
            self._forward_stderr(self._process.stderr))

        self.logger.info(f"Native helper started (pid {self._process.pid})")
        return NativeActionClient(self._channel)

    async def stop(self) -> Optional[int]:
        """
        Stop the helper: close its stdin, then terminate it if it does not exit.

        Returns:
            The helper's exit code, or None if it was not started
        """
        process = self._process
        if process is None:
            return None

        if process.returncode is None and process.stdin is not None and not process.stdin.is_closing():
            process.stdin.close()

        try:
            await asyncio.wait_for(process.wait(), timeout=STOP_TIMEOUT_S)
        except asyncio.TimeoutError:
            self.logger.warning("Native helper did not exit, terminating")
            process.terminate()
            try:
                await asyncio.wait_for(process.wait(), timeout=STOP_TIMEOUT_S)
            except asyncio.TimeoutError:
                self.logger.error("Native helper did not terminate, killing")
                process.kill()
                await process.wait()

        if self._channel is not None:
            await self._channel.close(process.returncode)
        if self._stderr_task is not None:
            await self._stderr_task

        self.logger.info(f"Native helper stopped (exit code {process.returncode})")
        return process.returncode

    async def _forward_stderr(self, stream: Optional[asyncio.StreamReader]) -> None:
        """Log helper stderr lines until the stream closes."""
        if stream is None:
            return
        try:
            while True:
                try:
                    line = await stream.readline()
                except ValueError as e:
                    # Line exceeded the stream limit; the reader drops it
                    self.logger.warning(f"Oversized helper stderr line discarded: {e}")
                    continue
                if not line:
                    break
                self.logger.info(f"[helper] {line.decode('utf-8', errors='replace').rstrip()}")
        except (ConnectionError, OSError) as e:
            self.logger.debug(f"Helper stderr closed: {e}")

    def _on_exit(self, data: dict) -> None:
        code = data.get("code")
        if code:
            self.logger.error(f"Native helper exited unexpectedly (code {code})")

    async def __aenter__(self) -> NativeActionClient:
        return await self.start()

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.stop()
