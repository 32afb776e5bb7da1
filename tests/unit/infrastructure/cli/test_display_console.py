import io
from unittest.mock import MagicMock

import pytest
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from gisops.domain.models.common import JobId
from gisops.domain.models.edits import EditItemResult, EditResult
from gisops.domain.models.jobs import JobHandle, JobMessage, JobStatus, JobStatusReport, MessageSeverity, ResultPayload
from gisops.infrastructure.cli.display import ConsoleDisplay


@pytest.fixture
def mock_console():
    """Fixture to create a mock rich Console object."""
    return MagicMock()


@pytest.fixture
def console_display(mock_console: MagicMock):
    """Fixture to create a ConsoleDisplay instance with a mocked console."""
    return ConsoleDisplay(console=mock_console)


@pytest.fixture
def recording_display():
    """ConsoleDisplay writing to an in-memory rich console."""
    return ConsoleDisplay(console=Console(file=io.StringIO(), record=True, width=120))


def test_display_error_prints_a_panel(console_display: ConsoleDisplay, mock_console: MagicMock):
    console_display.display_error("Something went wrong")
    mock_console.print.assert_called_once()
    args, _ = mock_console.print.call_args
    assert isinstance(args[0], Panel)
    assert "Error" in str(args[0].title)


def test_display_job_status(recording_display: ConsoleDisplay):
    handle = JobHandle(id=JobId("j42"))
    recording_display.display_job_status(handle, JobStatusReport(JobStatus.EXECUTING, progress=37.4, message="Buffering"))
    output = recording_display.console.export_text()
    assert "Job j42: executing (37%) - Buffering" in output


def test_display_messages_table(console_display: ConsoleDisplay, mock_console: MagicMock):
    handle = JobHandle(id=JobId("j1"))
    console_display.display_messages(handle, [
        JobMessage(MessageSeverity.INFO, "Started", 0),
        JobMessage(MessageSeverity.ERROR, "Failed", 1),
    ])
    args, _ = mock_console.print.call_args
    assert isinstance(args[0], Table)
    assert args[0].row_count == 2


def test_display_no_messages(recording_display: ConsoleDisplay):
    recording_display.display_messages(JobHandle(id=JobId("j1")), [])
    assert "Job j1 has no messages." in recording_display.console.export_text()


def test_display_result(recording_display: ConsoleDisplay):
    recording_display.display_result(ResultPayload(job_id=JobId("j1"), values={"Output": {"features": []}}))
    output = recording_display.console.export_text()
    assert "Output" in output
    assert '{"features": []}' in output


def test_display_edit_result_after_rollback(recording_display: ConsoleDisplay):
    result = EditResult(add_results=[
        EditItemResult("t1", success=False, rolled_back=True),
        EditItemResult("t2", success=False, error_code=1000, error_message="Invalid geometry."),
    ])
    recording_display.display_edit_result(result, rolled_back=True)
    output = recording_display.console.export_text()
    assert "rolled back" in output
    assert "1000: Invalid geometry." in output
    assert "nothing was persisted" in output


def test_display_edit_result_success(recording_display: ConsoleDisplay):
    result = EditResult(add_results=[EditItemResult("t1", success=True, assigned_id=101)])
    recording_display.display_edit_result(result)
    output = recording_display.console.export_text()
    assert "101" in output
    assert "All edits applied. 1 succeeded, 0 failed." in output


def test_long_values_are_truncated():
    text = ConsoleDisplay._format_value("x" * 500)
    assert len(text) == 200
    assert text.endswith("...")
