"""Transport interface

A transport owns the byte stream to the agent process. The session needs
six operations from it: ``connect``, ``write``, ``read_lines``, ``close``,
``is_ready`` and ``end_input``. ``read_messages`` is provided on top of
``read_lines`` and yields decoded JSON frames.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, Iterator, Optional, Union

from agentwire.json_io import FrameDecoder


class Transport(ABC):
    """Abstract byte-stream transport to an agent process"""

    max_buffer_size: Optional[int] = None

    @abstractmethod
    def connect(self) -> None:
        """Establish the stream (start the process, open the pipes)"""

    @abstractmethod
    def write(self, data: str) -> None:
        """Write one or more encoded frames atomically"""

    @abstractmethod
    def read_lines(self) -> Iterator[Union[str, bytes]]:
        """Yield raw lines (or chunks) from the peer until the stream ends"""

    @abstractmethod
    def close(self) -> None:
        """Tear down the stream; must be idempotent"""

    @abstractmethod
    def is_ready(self) -> bool:
        """Check whether the transport is connected and writable"""

    @abstractmethod
    def end_input(self) -> None:
        """Signal end of input to the peer (close its stdin)"""

    def read_messages(self) -> Iterator[Dict[str, Any]]:
        """Yield decoded JSON frames from ``read_lines``"""
        return iter(FrameDecoder(self.read_lines(), self.max_buffer_size))


from agentwire.transport.process import SubprocessTransport  # noqa: E402

__all__ = ["Transport", "SubprocessTransport"]
