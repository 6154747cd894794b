"""
Local copies of the structures returned by the job engine.
"""

from dataclasses import dataclass, field
from typing import Any

from .constants import ParamType


@dataclass
class ParamValue:
    """A typed job parameter value."""
    param_type: int
    value: Any

    def format(self) -> str:
        """Render the value the way `paraminfo` prints it."""
        if self.value is None:
            return ""
        if self.param_type == ParamType.INTEGER:
            return str(int(self.value))
        if self.param_type == ParamType.FLOAT:
            return "%G" % float(self.value)
        return str(self.value)


@dataclass
class ParamInfo:
    """Definition of a job parameter."""
    param_type: int
    help_text: str = ""
    prompt: str = ""
    prompt_at_run: bool = False
    default_value: ParamValue | None = None
    design_default_value: ParamValue | None = None
    list_values: list[str] = field(default_factory=list)
    design_list_values: list[str] = field(default_factory=list)


@dataclass
class LogEvent:
    """Summary of a job log entry."""
    event_id: int
    timestamp: float
    type: int
    message: str


@dataclass
class LogDetail:
    """Full job log entry. A negative event id means the id is unknown."""
    event_id: int
    timestamp: float
    type: int
    full_message: list[str] = field(default_factory=list)
