"""Narrow contracts with the hosting agent runtime."""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Protocol


@dataclass(slots=True, frozen=True)
class ToolResult:
    """Response returned to the host for one tool invocation."""

    text: str
    is_error: bool = False


ToolHandler = Callable[[dict[str, Any]], Awaitable[ToolResult]]
EventHandler = Callable[[dict[str, Any]], Awaitable[None] | None]


class LeaderHost(Protocol):
    """What the leader needs from the conversation it reports into."""

    @property
    def cwd(self) -> Path: ...

    @property
    def session_file(self) -> str | None: ...

    def send_message(self, content: str, *, trigger_turn: bool) -> None:
        """Inject an informational message into the host conversation."""

    def set_widget(self, key: str, lines: Sequence[str] | None) -> None:
        """Show, replace, or (with ``None``) clear a status widget."""

    def available_models(self) -> Sequence[str] | None:
        """Model ids the host can run, or ``None`` when it cannot tell."""

    def current_model(self) -> str | None: ...


class WorkerHost(Protocol):
    """Registration surface of the hosting runtime."""

    def register_tool(self, name: str, description: str, handler: ToolHandler) -> None: ...

    def on(self, event: str, handler: EventHandler) -> None: ...
