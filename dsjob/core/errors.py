"""
Exception raised for every failed engine call.
"""

from .constants import status_name


class DSJobError(Exception):
    """An engine call returned a non-zero status code."""

    def __init__(self, status: int, message: str | None = None):
        self.status = status
        self.message = message or status_name(status)
        super().__init__(f"{self.message} (status {status})")

    @property
    def name(self) -> str:
        return status_name(self.status)
