"""
CLI display components for run notifications.

Provides different output formats for rendering a run:
- VerboseDisplay: Rich terminal UI with spinners, colors, and formatting
- CompactDisplay: Minimal output showing only the streamed text
- JsonDisplay: Raw JSON events for scripting and debugging
"""

from abc import ABC, abstractmethod
import json
from typing import Any

from rich.console import Console
from rich.markdown import Markdown
from rich.markup import escape
from rich.panel import Panel
from rich.progress import Progress, SpinnerColumn, TaskID, TextColumn

from .._types import Role, RunState
from ..coordinator import CoordinatorState, Notification
from ..events import (
    RunErrorEvent,
    StepStartedEvent,
    TextMessageContentEvent,
    ToolCallEndEvent,
    ToolCallResultEvent,
    ToolCallStartEvent,
)

_MAX_RESULT_CHARS = 500


def final_text(state: RunState) -> str:
    """Content of the last assistant message in the conversation."""
    for message in reversed(state.messages):
        if message.role == Role.ASSISTANT and message.content:
            return message.content
    return ""


class RunDisplay(ABC):
    """Base class for run display renderers."""

    def __init__(self, console: Console | None = None) -> None:
        self.console = console or Console()
        self.last: Notification | None = None

    @abstractmethod
    def on_notification(self, notification: Notification) -> None:
        """
        Handle one notification from the run.

        Args:
            notification: State change to render
        """
        pass

    def start(self) -> None:
        """Start the display (called before the first notification)."""
        pass

    def finish(self) -> None:
        """Finish the display (called after the terminal notification)."""
        pass

    def _error_text(self, notification: Notification) -> str:
        error = notification.error
        if error is None:
            return "Run failed"
        return escape(f"{error.message} ({error.code})")


class CompactDisplay(RunDisplay):
    """
    Compact display showing only text output.

    Prints assistant text as it streams, plus a single line for errors or
    cancellation.
    """

    def __init__(self, console: Console | None = None) -> None:
        super().__init__(console=console)
        self.printed_text = False
        self.error_shown = False

    def on_notification(self, notification: Notification) -> None:
        """Display text deltas and the terminal outcome."""
        self.last = notification
        event = notification.event

        if isinstance(event, TextMessageContentEvent):
            print(event.delta, end="", flush=True)
            self.printed_text = True
            return

        # An errored run can be reported by both the failing event and the final notice.
        if notification.status == CoordinatorState.ERRORED and not self.error_shown:
            self.console.print(f"\n[red]❌ Error: {self._error_text(notification)}[/red]")
            self.error_shown = True
        elif notification.status == CoordinatorState.CANCELLED and notification.event is None:
            self.console.print("\n[yellow]Run cancelled[/yellow]")

    def finish(self) -> None:
        """Finish with newline."""
        if self.printed_text:
            print()


class VerboseDisplay(RunDisplay):
    """
    Verbose display with rich terminal UI.

    Shows:
    - Real-time text streaming
    - Tool call progress with spinners
    - Tool results in formatted panels
    - Warnings and errors with clear formatting
    """

    def __init__(self, console: Console | None = None) -> None:
        super().__init__(console=console)
        self.progress: Progress | None = None
        self.task_id: TaskID | None = None
        self.tool_names: dict[str, str] = {}
        self.error_shown = False

    def on_notification(self, notification: Notification) -> None:
        """Display notification with rich formatting."""
        self.last = notification
        event = notification.event

        for warning in notification.warnings:
            self.console.print(f"[yellow]⚠ {warning.message}[/yellow]")

        if isinstance(event, TextMessageContentEvent):
            self.console.print(event.delta, end="", style="white", markup=False)
        elif isinstance(event, StepStartedEvent):
            self.console.print(f"\n[dim]▸ {event.step_name}[/dim]")
        elif isinstance(event, ToolCallStartEvent):
            self._handle_tool_call_start(event)
        elif isinstance(event, ToolCallEndEvent):
            self._handle_tool_call_end(event, notification.state)
        elif isinstance(event, ToolCallResultEvent):
            self._handle_tool_result(event)

        if notification.status == CoordinatorState.ERRORED and not self.error_shown:
            self._stop_progress()
            title = "Agent error" if isinstance(event, RunErrorEvent) else "Error"
            self.console.print(
                Panel(
                    f"[red]{self._error_text(notification)}[/red]",
                    title=f"[red]❌ {title}[/red]",
                    border_style="red",
                )
            )
            self.error_shown = True
        elif notification.status == CoordinatorState.CANCELLED:
            self._stop_progress()

    def _handle_tool_call_start(self, event: ToolCallStartEvent) -> None:
        """Render tool call start with spinner feedback."""
        self._stop_progress()
        self.tool_names[event.tool_call_id] = event.tool_call_name
        self.console.print()
        self.console.print(
            f"[bold cyan]⚡ Calling tool:[/bold cyan] [yellow]{event.tool_call_name}[/yellow]"
        )
        self.progress = Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            console=self.console,
            transient=True,
        )
        self.progress.start()
        self.task_id = self.progress.add_task(
            f"Streaming {event.tool_call_name} arguments...", total=None
        )

    def _handle_tool_call_end(self, event: ToolCallEndEvent, state: RunState) -> None:
        self._stop_progress()
        tool_call = state.find_tool_call(event.tool_call_id)
        name = self.tool_names.get(event.tool_call_id, "tool")
        arguments = tool_call.arguments if tool_call is not None else ""
        self.console.print(f"[green]✅ {name}[/green] [dim]{escape(arguments)}[/dim]")

    def _handle_tool_result(self, event: ToolCallResultEvent) -> None:
        name = self.tool_names.get(event.tool_call_id, "Tool")
        self.console.print(
            Panel(
                escape(_format_tool_result(event.content)),
                title=f"[green]✓[/green] Tool Result: {name}",
                border_style="green",
                expand=False,
            )
        )

    def finish(self) -> None:
        """Render the final response panel."""
        self._stop_progress()
        if self.last is None:
            return
        self.console.print()
        if self.last.status == CoordinatorState.CANCELLED:
            self.console.print("[yellow]Run cancelled[/yellow]")
            return
        text = final_text(self.last.state)
        if text.strip():
            self.console.print(_build_markdown_panel(text))
        for warning in self.last.state.warnings:
            self.console.print(f"[dim]warning: {warning.code} {warning.target_id or ''}[/dim]")

    def _stop_progress(self) -> None:
        """Safely stop the active spinner to avoid overlapping Live displays."""
        if self.progress:
            try:
                self.progress.stop()
            finally:
                self.progress = None
        self.task_id = None


class JsonDisplay(RunDisplay):
    """
    JSON display for raw event streaming.

    Outputs each event as a JSON line, followed by one status line
    describing how the run ended.
    """

    def on_notification(self, notification: Notification) -> None:
        """Output event as JSON line."""
        self.last = notification
        if notification.event is not None:
            print(json.dumps(notification.event.to_dict()), flush=True)
        if notification.terminal:
            output: dict[str, Any] = {"status": notification.status.value}
            if notification.error is not None:
                output["error"] = {
                    "code": notification.error.code,
                    "message": notification.error.message,
                }
            print(json.dumps(output), flush=True)


def _format_tool_result(content: str) -> str:
    """Pretty-print JSON results and truncate long ones."""
    try:
        text = json.dumps(json.loads(content), indent=2)
    except ValueError:
        text = content
    if len(text) > _MAX_RESULT_CHARS:
        text = text[: _MAX_RESULT_CHARS - 3] + "..."
    return text


def _build_markdown_panel(text: str, *, title: str = "[cyan]Response[/cyan]") -> Panel:
    """Convert raw markdown text into a Rich panel with consistent styling."""
    content = Markdown(text, code_theme="monokai", justify="left")
    return Panel(content, title=title, border_style="cyan", expand=True)


def create_display(format: str = "verbose", console: Console | None = None) -> RunDisplay:
    """
    Factory function to create appropriate display.

    Args:
        format: Display format ("verbose", "compact", or "json")

    Returns:
        RunDisplay instance
    """
    if format == "compact":
        return CompactDisplay(console=console)
    elif format == "json":
        return JsonDisplay(console=console)
    else:  # "verbose" is default
        return VerboseDisplay(console=console)
