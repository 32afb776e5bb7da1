"""Interface for presenting job and edit outcomes to the user.

Allows different UI implementations (console, notebooks, tests) to render
the same domain values.
"""

import abc
from typing import Any, List

from gisops.domain.models.edits import EditResult
from gisops.domain.models.jobs import JobHandle, JobMessage, JobStatusReport, ResultPayload


class UserInterface(abc.ABC):
    """Abstract Base Class for user interaction."""

    @abc.abstractmethod
    def display_info(self, info_message: str, **kwargs: Any) -> None:
        pass

    @abc.abstractmethod
    def display_warning(self, warning_message: str, **kwargs: Any) -> None:
        pass

    @abc.abstractmethod
    def display_error(self, error_message: str, **kwargs: Any) -> None:
        pass

    @abc.abstractmethod
    def display_job_status(self, handle: JobHandle, report: JobStatusReport) -> None:
        """Displays one status observation for a job.

        Args:
            handle: The job being observed.
            report: Its latest status report.
        """
        pass

    @abc.abstractmethod
    def display_messages(self, handle: JobHandle, messages: List[JobMessage]) -> None:
        pass

    @abc.abstractmethod
    def display_result(self, payload: ResultPayload) -> None:
        pass

    @abc.abstractmethod
    def display_edit_result(self, result: EditResult, rolled_back: bool = False) -> None:
        """Displays the per-item outcome table of a batch edit.

        Args:
            result: The decoded edit result.
            rolled_back: Whether the batch was rolled back as a unit.
        """
        pass
