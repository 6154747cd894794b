"""
Numeric codes shared with the job engine client library.

The values match the engine's public header, so they can be passed straight
through the vendor binding and stored as-is by the local engine.
"""

from enum import IntEnum


class RunMode(IntEnum):
    """How a job run is started."""
    NORMAL = 1
    RESET = 2
    VALIDATE = 3


class JobStatus(IntEnum):
    """Job status values reported by the engine."""
    RUNNING = 0
    RUNOK = 1
    RUNWARN = 2
    RUNFAILED = 3
    VALOK = 11
    VALWARN = 12
    VALFAILED = 13
    RESET = 21
    CRASHED = 96
    STOPPED = 97
    NOTRUNNABLE = 98
    NOTRUNNING = 99


class LogType(IntEnum):
    """Log event types. ANY is only valid as a filter."""
    ANY = 0
    INFO = 1
    WARNING = 2
    FATAL = 3
    REJECT = 4
    STARTED = 5
    RESET = 6
    BATCH = 7
    OTHER = 98


class ParamType(IntEnum):
    """Job parameter types."""
    STRING = 1
    ENCRYPTED = 2
    INTEGER = 3
    FLOAT = 4
    PATHNAME = 5
    LIST = 6
    DATE = 7
    TIME = 8


class LimitType(IntEnum):
    WARN = 1
    ROWS = 2


class ProjectInfo(IntEnum):
    JOBLIST = 1
    PROJECTNAME = 2
    HOSTNAME = 3


class JobInfo(IntEnum):
    JOBSTATUS = 1
    JOBNAME = 2
    JOBCONTROLLER = 3
    JOBSTARTTIMESTAMP = 4
    JOBWAVENO = 5
    PARAMLIST = 6
    STAGELIST = 7
    USERSTATUS = 8


class StageInfo(IntEnum):
    STAGELASTERR = 1
    STAGENAME = 2
    STAGETYPE = 3
    STAGEINROWNUM = 4
    LINKLIST = 5


class LinkInfo(IntEnum):
    LINKLASTERR = 1
    LINKNAME = 2
    LINKROWCOUNT = 3


# API status codes
DSJE_NOERROR = 0
DSJE_BADHANDLE = -1
DSJE_BADSTATE = -2
DSJE_BADPARAM = -3
DSJE_BADVALUE = -4
DSJE_BADTYPE = -5
DSJE_WRONGJOB = -6
DSJE_BADSTAGE = -7
DSJE_NOTINSTAGE = -8
DSJE_BADLINK = -9
DSJE_JOBLOCKED = -10
DSJE_JOBDELETED = -11
DSJE_BADNAME = -12
DSJE_BADTIME = -13
DSJE_TIMEOUT = -14
DSJE_DECRYPTERR = -15
DSJE_NOACCESS = -16
DSJE_NOTEMPLATE = -17
DSJE_BADTEMPLATE = -18
DSJE_NOTSUPPORTED = -19
DSJE_REPERROR = -99
DSJE_NOMORE = -1001
DSJE_BADPROJECT = -1002
DSJE_NO_DATASTAGE = -1003
DSJE_OPENFAIL = -1004
DSJE_NO_MEMORY = -1005
DSJE_SERVER_ERROR = -1006
DSJE_NOT_AVAILABLE = -1007
DSJE_BAD_VERSION = -1008
DSJE_INCOMPATIBLE_SERVER = -1009

# Raised by the client itself, never by the engine
DSJE_DSJOB_ERROR = -9999

STATUS_NAMES = {
    value: name
    for name, value in globals().items()
    if name.startswith("DSJE_") and isinstance(value, int)
}

# Labels printed by `jobinfo`
JOB_STATUS_LABELS = {
    JobStatus.RUNNING: "RUNNING",
    JobStatus.RUNOK: "RUN OK",
    JobStatus.RUNWARN: "RUN with WARNINGS",
    JobStatus.RUNFAILED: "RUN FAILED",
    JobStatus.VALOK: "VALIDATED OK",
    JobStatus.VALWARN: "VALIDATE with WARNINGS",
    JobStatus.VALFAILED: "VALIDATION FAILED",
    JobStatus.RESET: "RESET",
    JobStatus.CRASHED: "CRASHED",
    JobStatus.STOPPED: "STOPPED",
    JobStatus.NOTRUNNABLE: "NOT COMPILED",
    JobStatus.NOTRUNNING: "NOT RUNNING",
}

# Labels printed by `paraminfo`
PARAM_TYPE_LABELS = {
    ParamType.STRING: "String",
    ParamType.ENCRYPTED: "Encrypted",
    ParamType.INTEGER: "Integer",
    ParamType.FLOAT: "Float",
    ParamType.PATHNAME: "Pathname",
    ParamType.LIST: "List",
    ParamType.DATE: "Date",
    ParamType.TIME: "Time",
}

# Event type names accepted on the command line (ANY is not selectable)
LOG_TYPE_NAMES = [t.name for t in LogType if t is not LogType.ANY]


def status_name(status: int) -> str:
    """Symbolic name for an API status code, or the number itself."""
    return STATUS_NAMES.get(status, str(status))


def job_status_label(status: int) -> str:
    try:
        return JOB_STATUS_LABELS[JobStatus(status)]
    except ValueError:
        return "UNKNOWN"


def log_type_label(log_type: int) -> str:
    try:
        log_type = LogType(log_type)
    except ValueError:
        return "????"
    if log_type is LogType.ANY:
        return "????"
    return log_type.name
