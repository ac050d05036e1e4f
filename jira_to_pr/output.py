"""
jira-to-pr Output Sink

Every piece of operator-facing output goes through an OutputSink that
the caller hands to the Controller. The CLI uses the terminal console;
programmatic callers use OutputSink.capture() and read .text() after
the run instead of redirecting a process-wide stream.
"""

from __future__ import annotations

import io
from typing import Any

from rich.console import Console
from rich.status import Status


class OutputSink:
    def __init__(self, console: Console | None = None):
        self.console = console or Console()
        self._buffer: io.StringIO | None = None

    @classmethod
    def capture(cls, width: int = 120) -> "OutputSink":
        """A sink that records plain text instead of writing to a terminal."""
        buffer = io.StringIO()
        console = Console(file=buffer, width=width, force_terminal=False, color_system=None)
        sink = cls(console)
        sink._buffer = buffer
        return sink

    def text(self) -> str:
        if self._buffer is None:
            raise RuntimeError("text() is only available on a capturing sink")
        return self._buffer.getvalue()

    @property
    def interactive(self) -> bool:
        return self._buffer is None and self.console.is_terminal

    def print(self, *objects: Any, **kwargs: Any) -> None:
        self.console.print(*objects, **kwargs)

    def dim(self, message: str) -> None:
        self.console.print(f"[dim]{message}[/]", highlight=False)

    def success(self, message: str) -> None:
        self.console.print(f"[green]✓ {message}[/]", highlight=False)

    def warning(self, message: str) -> None:
        self.console.print(f"[yellow]⚠ {message}[/]", highlight=False)

    def error(self, message: str) -> None:
        self.console.print(f"[red]✗ {message}[/]", highlight=False)

    def status(self, message: str) -> Status:
        return self.console.status(message, spinner="dots")


class ThinkingIndicator:
    """
    Spinner that shows streaming progress from the model.
    Purely cosmetic: the caller still blocks until the stream completes.
    """

    def __init__(self, sink: OutputSink):
        self.sink = sink
        self._status: Status | None = None
        self._label = ""
        self._tokens = 0

    def start(self, label: str) -> None:
        self._label = label
        self._tokens = 0
        if self.sink.interactive:
            self._status = self.sink.status(f"{label}...")
            self._status.start()

    def on_token(self, token: str) -> None:
        self._tokens += 1
        if self._status:
            self._status.update(f"{self._label}... [dim]({self._tokens} chunks received)[/]")

    def _stop(self) -> None:
        if self._status:
            self._status.stop()
            self._status = None

    def succeed(self, message: str) -> None:
        self._stop()
        self.sink.success(message)

    def fail(self, message: str) -> None:
        self._stop()
        self.sink.error(message)
