"""
Conversion of `name=value` command-line strings into typed parameter values.
"""

from .constants import DSJE_BADVALUE, ParamType
from .errors import DSJobError
from .models import ParamValue

STRING_TYPES = frozenset({
    ParamType.STRING,
    ParamType.ENCRYPTED,
    ParamType.PATHNAME,
    ParamType.LIST,
    ParamType.DATE,
    ParamType.TIME,
})


def split_assignment(assignment: str) -> tuple[str, str]:
    """Split `name=value` at the first '='."""
    name, sep, value = assignment.partition("=")
    if not sep:
        raise ValueError(f"expected <name>=<value>, got '{assignment}'")
    return name, value


def coerce_value(param_type: int, text: str) -> ParamValue:
    """
    Build a ParamValue of the engine-declared type from its string form.

    Unknown types fall back to a string value.
    """
    try:
        param_type = ParamType(param_type)
    except ValueError:
        return ParamValue(ParamType.STRING, text)

    if param_type in STRING_TYPES:
        return ParamValue(param_type, text)

    try:
        if param_type is ParamType.INTEGER:
            return ParamValue(param_type, int(text.strip()))
        return ParamValue(param_type, float(text.strip()))
    except ValueError:
        raise DSJobError(
            DSJE_BADVALUE,
            f"Invalid {param_type.name.lower()} value '{text}'",
        ) from None
