"""Operator acknowledgment when the known defect is reproduced.

When the server raises the defect signature the run pauses so the operator
can read the container's stack trace before the container is destroyed.
The pause goes through the ``Acknowledger`` protocol: interactive runs use
``ConsoleAcknowledger``, automated runs and tests pass ``NoopAcknowledger``
or their own recorder.
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from rich.console import Console

from cqlrepro.core.logging import get_logger

logger = get_logger(__name__)


@runtime_checkable
class Acknowledger(Protocol):
    """Receives a diagnostic message and returns once it is acknowledged."""

    def acknowledge(self, message: str) -> None: ...


class ConsoleAcknowledger:
    """Prints the message and blocks on one line of input."""

    def __init__(self, console: Console | None = None, prompt: str = "Press Enter to continue: ") -> None:
        self.console = console or Console()
        self.prompt = prompt

    def acknowledge(self, message: str) -> None:
        self.console.print(f"[bold yellow]{message}[/bold yellow]")
        try:
            self.console.input(self.prompt)
        except EOFError:
            # stdin closed (piped or detached run); nothing to wait for.
            logger.warning("acknowledge.no_input")


class NoopAcknowledger:
    """Logs the message and returns immediately."""

    def __init__(self) -> None:
        self.messages: list[str] = []

    def acknowledge(self, message: str) -> None:
        self.messages.append(message)
        logger.info("acknowledge.skipped", message=message)


__all__ = ["Acknowledger", "ConsoleAcknowledger", "NoopAcknowledger"]
