"""Communication with the native helper process."""

from .channel import NO_TIMEOUT, MessageChannel
from .process import HelperProcess
from .protocol import NativeActionClient

__all__ = [
    "NO_TIMEOUT",
    "MessageChannel",
    "HelperProcess",
    "NativeActionClient",
]
