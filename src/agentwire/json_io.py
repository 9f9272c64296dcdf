"""JSON I/O - Reading and Writing newline-delimited JSON frames

This module provides streaming JSON frame encoding/decoding over stdio pipes.

## Wire Format

```
{"type": "...", ...}\\n
{"type": "...", ...}\\n
```

Each frame is one UTF-8 encoded JSON object followed by a newline. On the
read side the decoder is tolerant of the ways a real peer deviates from
that ideal:

- several objects packed on one physical line
- objects split over several reads (arbitrary chunk boundaries)
- a raw newline inside a string value, which splits one object over two
  physical lines

Decoding is bounded by a maximum buffer size; exceeding it is fatal.
"""

import codecs
import io
import json
import threading
from typing import Any, Callable, Dict, Iterable, Iterator, List, Optional, Union

from agentwire.errors import CLIConnectionError, CLIJSONDecodeError, FrameOverflowError


# Maximum accumulated size of a single JSON frame (1 MB)
DEFAULT_MAX_BUFFER_SIZE = 1024 * 1024

# strict=False admits raw control characters (e.g. newlines) inside strings
_DECODER = json.JSONDecoder(strict=False)
_WHITESPACE = " \t\r\n"


def encode_frame(frame: Dict[str, Any]) -> str:
    """Encode a frame as a single newline-terminated JSON line

    Args:
        frame: JSON-serializable mapping

    Returns:
        Encoded line, including the trailing newline
    """
    return json.dumps(frame, ensure_ascii=False, separators=(",", ":")) + "\n"


def _split_keepends(text: str) -> List[str]:
    """Split on LF only, keeping the terminator on every piece but the last"""
    parts = text.split("\n")
    pieces = [part + "\n" for part in parts[:-1]]
    if parts[-1]:
        pieces.append(parts[-1])
    return pieces


class FrameDecoder:
    """Incremental decoder from a line/chunk source to JSON objects

    The source may yield ``str`` or ``bytes``; bytes are decoded as UTF-8
    incrementally, so a multi-byte character split across two reads is
    handled. The decoder is tied to one source and cannot be restarted.
    """

    def __init__(self, source: Iterable[Union[str, bytes]], max_buffer_size: Optional[int] = None):
        """Create a new frame decoder

        Args:
            source: Iterable of raw lines or chunks
            max_buffer_size: Optional limit (defaults to DEFAULT_MAX_BUFFER_SIZE)
        """
        self.source = source
        self.max_buffer_size = max_buffer_size if max_buffer_size is not None else DEFAULT_MAX_BUFFER_SIZE
        self._buffer = ""
        self._started = False
        self._utf8 = codecs.getincrementaldecoder("utf-8")()

    def __iter__(self) -> Iterator[Dict[str, Any]]:
        if self._started:
            raise RuntimeError("FrameDecoder is not restartable")
        self._started = True
        return self._frames()

    def buffered(self) -> str:
        """Get the text accumulated but not yet decoded"""
        return self._buffer

    def _frames(self) -> Iterator[Dict[str, Any]]:
        for raw in self.source:
            if isinstance(raw, (bytes, bytearray)):
                text = self._utf8.decode(bytes(raw))
            else:
                text = raw
            for piece in _split_keepends(text):
                yield from self.feed(piece)

        tail = self._utf8.decode(b"", final=True)
        if tail:
            yield from self.feed(tail)

        leftover = self._buffer
        self._buffer = ""
        if leftover.strip(_WHITESPACE):
            raise CLIJSONDecodeError(leftover, ValueError("incomplete JSON at end of stream"))

    def feed(self, piece: str) -> Iterator[Dict[str, Any]]:
        """Append one piece of text and yield every frame it completes

        Raises:
            FrameOverflowError: If the accumulated frame exceeds max_buffer_size
            CLIJSONDecodeError: If a complete value is not a JSON object
        """
        if not self._buffer and not piece.strip(_WHITESPACE):
            return

        self._buffer += piece

        size = len(self._buffer.encode("utf-8"))
        if size > self.max_buffer_size:
            self._buffer = ""
            raise FrameOverflowError(size, self.max_buffer_size)

        while True:
            text = self._buffer.lstrip(_WHITESPACE)
            if not text:
                self._buffer = ""
                return

            try:
                value, end = _DECODER.raw_decode(text)
            except json.JSONDecodeError:
                # Incomplete value - keep accumulating
                self._buffer = text
                return

            self._buffer = text[end:]
            if not isinstance(value, dict):
                raise CLIJSONDecodeError(
                    text[:end], TypeError(f"expected JSON object, got {type(value).__name__}")
                )
            yield value


class FrameWriter:
    """Serializes frames onto a shared output stream

    Writes are mutually exclusive, so concurrent senders never interleave
    partial frames. A write is refused before the stream is touched when
    the writer is not ready, when the peer process has terminated, or when a
    fatal exit condition was recorded; each refusal clears the writable flag.
    """

    def __init__(self, stream, poll: Optional[Callable[[], Optional[int]]] = None):
        """Create a new frame writer

        Args:
            stream: Text or binary output stream
            poll: Optional probe returning the peer's exit code, or None while
                it is still running (``subprocess.Popen.poll`` semantics)
        """
        self._stream = stream
        self._poll = poll
        self._lock = threading.Lock()
        self._ready = stream is not None
        self._exit_error: Optional[BaseException] = None

    def is_ready(self) -> bool:
        """Check whether the writer will accept frames"""
        return self._ready

    def exit_error(self) -> Optional[BaseException]:
        """Get the recorded fatal exit condition, if any"""
        return self._exit_error

    def record_exit_error(self, error: BaseException) -> None:
        """Record a fatal exit condition; every later write is refused"""
        with self._lock:
            self._exit_error = error
            self._ready = False

    def write(self, frame: Dict[str, Any]) -> None:
        """Write a frame

        Raises:
            CLIConnectionError: If the stream is not writable
        """
        self.write_raw(encode_frame(frame))

    def write_raw(self, data: str) -> None:
        """Write pre-encoded text under the writer lock

        Raises:
            CLIConnectionError: If the stream is not writable
        """
        with self._lock:
            if not self._ready or self._stream is None:
                self._ready = False
                raise CLIConnectionError("Transport is not ready for writing")

            if self._poll is not None:
                exit_code = self._poll()
                if exit_code is not None:
                    self._ready = False
                    raise CLIConnectionError(
                        f"Cannot write to terminated process (exit code: {exit_code})"
                    )

            if self._exit_error is not None:
                self._ready = False
                raise CLIConnectionError(
                    f"Cannot write to process that exited with error: {self._exit_error}"
                )

            payload = data if isinstance(self._stream, io.TextIOBase) else data.encode("utf-8")
            try:
                self._stream.write(payload)
                self._stream.flush()
            except (OSError, ValueError) as e:
                self._ready = False
                self._exit_error = CLIConnectionError(f"Failed to write to process stdin: {e}")
                raise self._exit_error from e

    def end_input(self) -> None:
        """Close the output stream, signalling end of input to the peer"""
        with self._lock:
            stream = self._stream
            self._stream = None
            self._ready = False
        if stream is not None:
            try:
                stream.close()
            except (OSError, ValueError):
                pass  # Peer already closed its end
