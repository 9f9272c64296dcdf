"""Subprocess transport - talks to an agent process over its stdin/stdout

The transport runs an already-built command; locating the executable and
constructing its arguments is the caller's job.

Usage:
```python
from agentwire.transport import SubprocessTransport

transport = SubprocessTransport(["my-agent", "--input-format", "stream-json"])
transport.connect()
for frame in transport.read_messages():
    ...
transport.close()
```
"""

import os
import subprocess
import threading
from typing import Any, Callable, Dict, Iterator, List, Optional

from agentwire.errors import CLIConnectionError, CLINotFoundError, ProcessError
from agentwire.json_io import FrameWriter
from agentwire.transport import Transport


# Grace periods when tearing down the process and its stderr reader
TERMINATE_GRACE = 0.2
STDERR_JOIN_GRACE = 0.1


class SubprocessTransport(Transport):
    """Transport backed by a child process with piped stdio"""

    def __init__(
        self,
        argv: List[str],
        cwd: Optional[str] = None,
        env: Optional[Dict[str, str]] = None,
        max_buffer_size: Optional[int] = None,
        stderr: Optional[Callable[[str], None]] = None,
    ):
        """Create a transport for a command

        Args:
            argv: Complete command line for the agent process
            cwd: Optional working directory
            env: Extra environment variables, layered over os.environ
            max_buffer_size: Optional frame size limit for the decoder
            stderr: Optional callback receiving each non-empty stderr line
        """
        self.argv = list(argv)
        self.cwd = cwd
        self.env = dict(env or {})
        self.max_buffer_size = max_buffer_size
        self._stderr_callback = stderr
        self._process: Optional[subprocess.Popen] = None
        self._writer: Optional[FrameWriter] = None
        self._stderr_thread: Optional[threading.Thread] = None
        self._closing = False

    @property
    def process(self) -> Optional[subprocess.Popen]:
        return self._process

    def connect(self) -> None:
        if self._process is not None:
            return

        if not self.argv:
            raise CLIConnectionError("No agent command configured")

        if self.cwd and not os.path.isdir(self.cwd):
            raise CLIConnectionError(f"Working directory does not exist: {self.cwd}")

        process_env = dict(os.environ)
        process_env.update(self.env)

        try:
            process = subprocess.Popen(
                self.argv,
                stdin=subprocess.PIPE,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE if self._stderr_callback else subprocess.DEVNULL,
                cwd=self.cwd,
                env=process_env,
                text=True,
                encoding="utf-8",
                bufsize=1,
            )
        except FileNotFoundError as e:
            raise CLINotFoundError("Agent executable not found", cli_path=self.argv[0]) from e
        except OSError as e:
            raise CLIConnectionError(f"Failed to start agent process: {e}") from e

        self._process = process
        self._closing = False
        self._writer = FrameWriter(process.stdin, poll=process.poll)

        if self._stderr_callback is not None:
            self._stderr_thread = threading.Thread(target=self._stderr_loop, args=(process,), daemon=True)
            self._stderr_thread.start()

    def _stderr_loop(self, process: subprocess.Popen) -> None:
        """Stderr thread - forwards each non-empty line to the callback"""
        try:
            for line in process.stderr:
                line = line.rstrip()
                if line:
                    self._stderr_callback(line)
        except (OSError, ValueError):
            return  # stderr closed during teardown

    def write(self, data: str) -> None:
        if self._writer is None:
            raise CLIConnectionError("Transport is not ready for writing")
        self._writer.write_raw(data)

    def read_lines(self) -> Iterator[str]:
        process = self._process
        if process is None:
            raise CLIConnectionError("Not connected")
        try:
            for line in process.stdout:
                yield line
        except (OSError, ValueError):
            return  # stdout closed during teardown

    def read_messages(self) -> Iterator[Dict[str, Any]]:
        """Yield decoded frames, then raise ProcessError if the process failed"""
        yield from super().read_messages()

        process = self._process
        if process is None or self._closing:
            return

        exit_code = process.wait()
        if exit_code != 0 and not self._closing:
            error = ProcessError(
                "Command failed",
                exit_code=exit_code,
                stderr="Check stderr output for details",
            )
            if self._writer is not None:
                self._writer.record_exit_error(error)
            raise error

    def is_ready(self) -> bool:
        return self._writer is not None and self._writer.is_ready()

    def end_input(self) -> None:
        if self._writer is not None:
            self._writer.end_input()

    def close(self) -> None:
        self._closing = True
        process = self._process

        if self._writer is not None:
            self._writer.end_input()

        if process is not None:
            if process.poll() is None:
                try:
                    process.terminate()
                    process.wait(timeout=TERMINATE_GRACE)
                except subprocess.TimeoutExpired:
                    process.kill()
                    process.wait()
                except OSError:
                    pass  # Already reaped

            for stream in (process.stdout, process.stderr):
                if stream is not None:
                    try:
                        stream.close()
                    except (OSError, ValueError):
                        pass

        if self._stderr_thread is not None:
            self._stderr_thread.join(STDERR_JOIN_GRACE)
            self._stderr_thread = None

        self._process = None
