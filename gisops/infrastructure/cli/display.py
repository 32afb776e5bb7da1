import json
import logging
from typing import Any, List, Optional

from rich.box import HEAVY, ROUNDED, SIMPLE
from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from gisops.domain.interfaces.user_interface import UserInterface
from gisops.domain.models.edits import EditItemResult, EditResult
from gisops.domain.models.jobs import JobHandle, JobMessage, JobStatus, JobStatusReport, MessageSeverity, ResultPayload

logger = logging.getLogger(__name__)

STATUS_STYLES = {
    JobStatus.SUBMITTED: "cyan",
    JobStatus.EXECUTING: "blue",
    JobStatus.SUCCEEDED: "bold green",
    JobStatus.FAILED: "bold red",
    JobStatus.CANCELLING: "yellow",
    JobStatus.CANCELLED: "yellow",
    JobStatus.TIMED_OUT: "bold magenta",
}

SEVERITY_STYLES = {
    MessageSeverity.INFO: "white",
    MessageSeverity.WARNING: "yellow",
    MessageSeverity.ERROR: "bold red",
}


class ConsoleDisplay(UserInterface):
    """Concrete implementation of UserInterface using the rich library for console output."""

    def __init__(self, console: Optional[Console] = None):
        self._console = console or Console()

    @property
    def console(self) -> Console:
        """Get the Rich console instance for direct operations."""
        return self._console

    def display_error(self, error_message: str, **kwargs: Any) -> None:
        panel = Panel(
            Text(error_message, style="white"),
            title="[bold red]Error[/bold red]",
            border_style="red",
            box=HEAVY,
            padding=(0, 1),
        )
        self.console.print(panel)

    def display_info(self, info_message: str, **kwargs: Any) -> None:
        panel = Panel(
            Text(info_message, style="white"),
            title="[bold blue]Info[/bold blue]",
            border_style="blue",
            box=SIMPLE,
            padding=(0, 1),
        )
        self.console.print(panel)

    def display_warning(self, warning_message: str, **kwargs: Any) -> None:
        panel = Panel(
            Text(warning_message, style="white"),
            title="[bold yellow]Warning[/bold yellow]",
            border_style="yellow",
            box=HEAVY,
            padding=(0, 1),
        )
        self.console.print(panel)

    def display_job_status(self, handle: JobHandle, report: JobStatusReport) -> None:
        style = STATUS_STYLES.get(report.status, "white")
        line = Text.assemble(("Job ", "dim"), (str(handle.id), "bold"), ": ", (report.status.value, style))
        if report.progress is not None:
            line.append(f" ({report.progress:.0f}%)", style="dim")
        if report.message:
            line.append(f" - {report.message}", style="dim")
        self.console.print(line)

    def display_messages(self, handle: JobHandle, messages: List[JobMessage]) -> None:
        if not messages:
            self.console.print(Text(f"Job {handle.id} has no messages.", style="dim"))
            return
        table = Table(title=f"Messages for job {handle.id}", box=ROUNDED, border_style="cyan", padding=(0, 1))
        table.add_column("#", style="cyan", justify="right")
        table.add_column("Severity")
        table.add_column("Message", style="white")
        for message in messages:
            style = SEVERITY_STYLES[message.severity]
            table.add_row(str(message.sequence), f"[{style}]{message.severity.value}[/{style}]", message.text)
        self.console.print(table)

    def display_result(self, payload: ResultPayload) -> None:
        table = Table(title=f"Result of job {payload.job_id}", box=ROUNDED, border_style="green", padding=(0, 1))
        table.add_column("Output", style="bold")
        table.add_column("Value", style="white")
        for name, value in payload.values.items():
            table.add_row(name, self._format_value(value))
        if not payload.values:
            table.add_row("[dim](none)[/dim]", "")
        self.console.print(table)

    def display_edit_result(self, result: EditResult, rolled_back: bool = False) -> None:
        table = Table(box=ROUNDED, border_style="cyan", padding=(0, 1))
        table.add_column("Kind", style="cyan")
        table.add_column("Item", style="bold")
        table.add_column("Outcome")
        table.add_column("Assigned id")
        table.add_column("Error", style="white")

        def add_rows(kind: str, results: List[EditItemResult]) -> None:
            for item in results:
                if item.success:
                    outcome = "[green]ok[/green]"
                elif item.rolled_back:
                    outcome = "[yellow]rolled back[/yellow]"
                else:
                    outcome = "[red]failed[/red]"
                error = ""
                if item.error_code is not None or item.error_message:
                    error = f"{item.error_code if item.error_code is not None else '-'}: {item.error_message or ''}"
                assigned = "" if item.assigned_id is None else str(item.assigned_id)
                table.add_row(kind, str(item.correlation_id), outcome, assigned, error)

        add_rows("add", result.add_results)
        add_rows("update", result.update_results)
        add_rows("delete", result.delete_results)
        self.console.print(table)

        summary = f"{result.success_count()} succeeded, {result.failure_count()} failed"
        if rolled_back:
            self.display_warning(f"Batch rolled back; nothing was persisted. {summary}.")
        elif result.all_succeeded():
            self.display_info(f"All edits applied. {summary}.")
        else:
            self.display_warning(f"Some edits failed. {summary}.")

    @staticmethod
    def _format_value(value: Any, limit: int = 200) -> str:
        if isinstance(value, str):
            text = value
        else:
            try:
                text = json.dumps(value)
            except (TypeError, ValueError):
                logger.debug(f"Result value of type {type(value).__name__} is not JSON serializable")
                text = repr(value)
        return text if len(text) <= limit else text[: limit - 3] + "..."
