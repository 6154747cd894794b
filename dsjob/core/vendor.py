"""
ctypes binding to the DataStage client library (vmdsapi).

Only the structure members the command line reads are declared. String
lists returned by the library are NUL-separated and end with an empty
string, so they are read from raw addresses rather than through c_char_p.
"""

import ctypes
import ctypes.util
import sys
from typing import Any

from .constants import (
    DSJE_NO_DATASTAGE,
    DSJE_NOERROR,
    JobInfo,
    LinkInfo,
    LogType,
    ParamType,
    ProjectInfo,
    RunMode,
    StageInfo,
    status_name,
)
from .engine import Engine, EngineConfig
from .errors import DSJobError
from .models import LogDetail, LogEvent, ParamInfo, ParamValue
from .params import STRING_TYPES

ENCODING = "utf-8"

time_t = ctypes.c_int64 if ctypes.sizeof(ctypes.c_void_p) == 8 or sys.platform == "win32" else ctypes.c_long


class _ParamValueUnion(ctypes.Union):
    _fields_ = [
        ("pString", ctypes.c_char_p),
        ("pInt", ctypes.c_int),
        ("pFloat", ctypes.c_float),
    ]


class DSPARAM(ctypes.Structure):
    _fields_ = [
        ("paramType", ctypes.c_int),
        ("paramValue", _ParamValueUnion),
    ]


class DSPARAMINFO(ctypes.Structure):
    _fields_ = [
        ("defaultValue", DSPARAM),
        ("helpText", ctypes.c_char_p),
        ("paramPrompt", ctypes.c_char_p),
        ("paramType", ctypes.c_int),
        ("desDefaultValue", DSPARAM),
        ("listValues", ctypes.c_void_p),
        ("desListValues", ctypes.c_void_p),
        ("promptAtRun", ctypes.c_int),
    ]


class DSLOGEVENT(ctypes.Structure):
    _fields_ = [
        ("eventId", ctypes.c_int),
        ("timestamp", time_t),
        ("type", ctypes.c_int),
        ("message", ctypes.c_char_p),
    ]


class DSLOGDETAIL(ctypes.Structure):
    _fields_ = [
        ("eventId", ctypes.c_int),
        ("timestamp", time_t),
        ("type", ctypes.c_int),
        ("reserve", ctypes.c_char_p),
        ("fullMessage", ctypes.c_void_p),
    ]


# Each info union also reserves room for members this client never reads
_UNION_RESERVE = ctypes.c_char * 256


class _ProjectInfoUnion(ctypes.Union):
    _fields_ = [
        ("jobList", ctypes.c_void_p),
        ("projectName", ctypes.c_char_p),
        ("hostName", ctypes.c_char_p),
        ("_reserve", _UNION_RESERVE),
    ]


class DSPROJECTINFO(ctypes.Structure):
    _fields_ = [("infoType", ctypes.c_int), ("info", _ProjectInfoUnion)]


class _JobInfoUnion(ctypes.Union):
    _fields_ = [
        ("jobStatus", ctypes.c_int),
        ("jobController", ctypes.c_char_p),
        ("jobStartTime", time_t),
        ("jobWaveNumber", ctypes.c_int),
        ("userStatus", ctypes.c_char_p),
        ("stageList", ctypes.c_void_p),
        ("paramList", ctypes.c_void_p),
        ("jobName", ctypes.c_char_p),
        ("_reserve", _UNION_RESERVE),
    ]


class DSJOBINFO(ctypes.Structure):
    _fields_ = [("infoType", ctypes.c_int), ("info", _JobInfoUnion)]


class _StageInfoUnion(ctypes.Union):
    _fields_ = [
        ("lastError", DSLOGDETAIL),
        ("typeName", ctypes.c_char_p),
        ("inRowNum", ctypes.c_int),
        ("linkList", ctypes.c_void_p),
        ("stageName", ctypes.c_char_p),
        ("_reserve", _UNION_RESERVE),
    ]


class DSSTAGEINFO(ctypes.Structure):
    _fields_ = [("infoType", ctypes.c_int), ("info", _StageInfoUnion)]


class _LinkInfoUnion(ctypes.Union):
    _fields_ = [
        ("lastError", DSLOGDETAIL),
        ("rowCount", ctypes.c_int),
        ("linkName", ctypes.c_char_p),
        ("_reserve", _UNION_RESERVE),
    ]


class DSLINKINFO(ctypes.Structure):
    _fields_ = [("infoType", ctypes.c_int), ("info", _LinkInfoUnion)]


# name -> (restype, argtypes)
PROTOTYPES = {
    "DSSetServerParams": (None, [ctypes.c_char_p] * 4),
    "DSOpenProject": (ctypes.c_void_p, [ctypes.c_char_p]),
    "DSCloseProject": (ctypes.c_int, [ctypes.c_void_p]),
    "DSOpenJob": (ctypes.c_void_p, [ctypes.c_void_p, ctypes.c_char_p]),
    "DSCloseJob": (ctypes.c_int, [ctypes.c_void_p]),
    "DSLockJob": (ctypes.c_int, [ctypes.c_void_p]),
    "DSUnlockJob": (ctypes.c_int, [ctypes.c_void_p]),
    "DSSetJobLimit": (ctypes.c_int, [ctypes.c_void_p, ctypes.c_int, ctypes.c_int]),
    "DSSetParam": (ctypes.c_int, [ctypes.c_void_p, ctypes.c_char_p, ctypes.POINTER(DSPARAM)]),
    "DSRunJob": (ctypes.c_int, [ctypes.c_void_p, ctypes.c_int]),
    "DSWaitForJob": (ctypes.c_int, [ctypes.c_void_p]),
    "DSStopJob": (ctypes.c_int, [ctypes.c_void_p]),
    "DSGetProjectList": (ctypes.c_void_p, []),
    "DSGetProjectInfo": (ctypes.c_int, [ctypes.c_void_p, ctypes.c_int, ctypes.POINTER(DSPROJECTINFO)]),
    "DSGetJobInfo": (ctypes.c_int, [ctypes.c_void_p, ctypes.c_int, ctypes.POINTER(DSJOBINFO)]),
    "DSGetStageInfo": (
        ctypes.c_int,
        [ctypes.c_void_p, ctypes.c_char_p, ctypes.c_int, ctypes.POINTER(DSSTAGEINFO)],
    ),
    "DSGetLinkInfo": (
        ctypes.c_int,
        [ctypes.c_void_p, ctypes.c_char_p, ctypes.c_char_p, ctypes.c_int, ctypes.POINTER(DSLINKINFO)],
    ),
    "DSGetParamInfo": (ctypes.c_int, [ctypes.c_void_p, ctypes.c_char_p, ctypes.POINTER(DSPARAMINFO)]),
    "DSLogEvent": (ctypes.c_int, [ctypes.c_void_p, ctypes.c_int, ctypes.c_char_p, ctypes.c_char_p]),
    "DSFindFirstLogEntry": (
        ctypes.c_int,
        [ctypes.c_void_p, ctypes.c_int, time_t, time_t, ctypes.c_int, ctypes.POINTER(DSLOGEVENT)],
    ),
    "DSFindNextLogEntry": (ctypes.c_int, [ctypes.c_void_p, ctypes.POINTER(DSLOGEVENT)]),
    "DSGetLogEntry": (ctypes.c_int, [ctypes.c_void_p, ctypes.c_int, ctypes.POINTER(DSLOGDETAIL)]),
    "DSGetNewestLogId": (ctypes.c_int, [ctypes.c_void_p, ctypes.c_int]),
    "DSGetLastError": (ctypes.c_int, []),
    "DSGetLastErrorMsg": (ctypes.c_void_p, [ctypes.c_void_p]),
}


def read_str_list(address: int | None) -> list[str]:
    """Decode a NUL-separated, double-NUL-terminated string list."""
    if not address:
        return []

    items = []
    while True:
        item = ctypes.string_at(address)
        if not item:
            break
        items.append(item.decode(ENCODING, errors="replace"))
        address += len(item) + 1
    return items


def _decode(value: bytes | None) -> str | None:
    return None if value is None else value.decode(ENCODING, errors="replace")


def _encode(value: str | None) -> bytes | None:
    return None if value is None else value.encode(ENCODING)


def find_library(path: str | None = None) -> str:
    """Resolve the client library to load."""
    if path:
        return path
    found = ctypes.util.find_library("vmdsapi")
    if found:
        return found
    return "vmdsapi.dll" if sys.platform == "win32" else "libvmdsapi.so"


def _to_param_value(param: DSPARAM) -> ParamValue:
    if param.paramType == ParamType.INTEGER:
        return ParamValue(param.paramType, param.paramValue.pInt)
    if param.paramType == ParamType.FLOAT:
        return ParamValue(param.paramType, param.paramValue.pFloat)
    return ParamValue(param.paramType, _decode(param.paramValue.pString))


def _to_log_detail(detail: DSLOGDETAIL) -> LogDetail:
    return LogDetail(
        event_id=detail.eventId,
        timestamp=detail.timestamp,
        type=detail.type,
        full_message=read_str_list(detail.fullMessage),
    )


class VendorEngine(Engine):
    """Engine calls forwarded to the vendor client library."""

    def __init__(self, config: EngineConfig | None = None):
        super().__init__(config)
        library = find_library(self.config.library_path)
        loader = ctypes.WinDLL if sys.platform == "win32" else ctypes.CDLL
        try:
            self.lib = loader(library)
        except OSError as e:
            raise DSJobError(DSJE_NO_DATASTAGE, f"Cannot load engine client library {library}: {e}") from e

        for name, (restype, argtypes) in PROTOTYPES.items():
            func = getattr(self.lib, name)
            func.restype = restype
            func.argtypes = argtypes
        self.logger.debug(f"Loaded engine client library {library}")

    def _check(self, status: int, call: str) -> None:
        if status != DSJE_NOERROR:
            self.logger.debug(f"{call} returned {status_name(status)}")
            raise DSJobError(status, self._error_text() or None)

    def _error_text(self) -> str:
        return "\n".join(self.get_last_error_msg())

    def _last_error(self, call: str) -> DSJobError:
        status = self.lib.DSGetLastError()
        self.logger.debug(f"{call} failed with {status_name(status)}")
        return DSJobError(status, self._error_text() or None)

    # Session

    def set_server_params(self, domain, user, password, server) -> None:
        self.lib.DSSetServerParams(_encode(domain), _encode(user), _encode(password), _encode(server))

    def get_last_error(self) -> int:
        return self.lib.DSGetLastError()

    def get_last_error_msg(self, project: Any = None) -> list[str]:
        return read_str_list(self.lib.DSGetLastErrorMsg(project))

    # Handles

    def open_project(self, name: str) -> int:
        handle = self.lib.DSOpenProject(_encode(name))
        if not handle:
            raise self._last_error("DSOpenProject")
        return handle

    def close_project(self, project: int) -> None:
        self._check(self.lib.DSCloseProject(project), "DSCloseProject")

    def open_job(self, project: int, name: str) -> int:
        handle = self.lib.DSOpenJob(project, _encode(name))
        if not handle:
            raise self._last_error("DSOpenJob")
        return handle

    def close_job(self, job: int) -> None:
        self._check(self.lib.DSCloseJob(job), "DSCloseJob")

    # Job control

    def lock_job(self, job: int) -> None:
        self._check(self.lib.DSLockJob(job), "DSLockJob")

    def unlock_job(self, job: int) -> None:
        self._check(self.lib.DSUnlockJob(job), "DSUnlockJob")

    def set_job_limit(self, job: int, limit_type: int, value: int) -> None:
        self._check(self.lib.DSSetJobLimit(job, limit_type, value), "DSSetJobLimit")

    def set_param(self, job: int, name: str, value: ParamValue) -> None:
        param = DSPARAM()
        param.paramType = value.param_type
        if value.param_type == ParamType.INTEGER:
            param.paramValue.pInt = value.value
        elif value.param_type == ParamType.FLOAT:
            param.paramValue.pFloat = value.value
        elif value.param_type in STRING_TYPES:
            # The bytes object stays referenced by `param` until the call returns
            param.paramValue.pString = _encode(value.value)
        else:
            param.paramType = ParamType.STRING
            param.paramValue.pString = _encode(str(value.value))
        self._check(self.lib.DSSetParam(job, _encode(name), ctypes.byref(param)), "DSSetParam")

    def run_job(self, job: int, mode: RunMode) -> None:
        self._check(self.lib.DSRunJob(job, int(mode)), "DSRunJob")

    def wait_for_job(self, job: int, timeout: float | None = None) -> None:
        if timeout is None:
            timeout = self.config.wait_timeout
        if timeout is None:
            self._check(self.lib.DSWaitForJob(job), "DSWaitForJob")
        else:
            self.poll_for_job(job, timeout)

    def stop_job(self, job: int) -> None:
        self._check(self.lib.DSStopJob(job), "DSStopJob")

    # Information

    def get_project_list(self) -> list[str]:
        address = self.lib.DSGetProjectList()
        if not address:
            raise self._last_error("DSGetProjectList")
        return read_str_list(address)

    def get_project_info(self, project: int, info_type: int) -> Any:
        info = DSPROJECTINFO()
        self._check(self.lib.DSGetProjectInfo(project, info_type, ctypes.byref(info)), "DSGetProjectInfo")

        if info_type == ProjectInfo.JOBLIST:
            return read_str_list(info.info.jobList)
        if info_type == ProjectInfo.PROJECTNAME:
            return _decode(info.info.projectName)
        return _decode(info.info.hostName)

    def get_job_info(self, job: int, info_type: int) -> Any:
        info = DSJOBINFO()
        self._check(self.lib.DSGetJobInfo(job, info_type, ctypes.byref(info)), "DSGetJobInfo")

        if info_type == JobInfo.JOBSTATUS:
            return info.info.jobStatus
        if info_type == JobInfo.JOBNAME:
            return _decode(info.info.jobName)
        if info_type == JobInfo.JOBCONTROLLER:
            return _decode(info.info.jobController)
        if info_type == JobInfo.JOBSTARTTIMESTAMP:
            return info.info.jobStartTime
        if info_type == JobInfo.JOBWAVENO:
            return info.info.jobWaveNumber
        if info_type == JobInfo.PARAMLIST:
            return read_str_list(info.info.paramList)
        if info_type == JobInfo.STAGELIST:
            return read_str_list(info.info.stageList)
        return _decode(info.info.userStatus)

    def get_stage_info(self, job: int, stage: str, info_type: int) -> Any:
        info = DSSTAGEINFO()
        self._check(
            self.lib.DSGetStageInfo(job, _encode(stage), info_type, ctypes.byref(info)),
            "DSGetStageInfo",
        )

        if info_type == StageInfo.STAGELASTERR:
            return _to_log_detail(info.info.lastError)
        if info_type == StageInfo.STAGENAME:
            return _decode(info.info.stageName)
        if info_type == StageInfo.STAGETYPE:
            return _decode(info.info.typeName)
        if info_type == StageInfo.STAGEINROWNUM:
            return info.info.inRowNum
        return read_str_list(info.info.linkList)

    def get_link_info(self, job: int, stage: str, link: str, info_type: int) -> Any:
        info = DSLINKINFO()
        self._check(
            self.lib.DSGetLinkInfo(job, _encode(stage), _encode(link), info_type, ctypes.byref(info)),
            "DSGetLinkInfo",
        )

        if info_type == LinkInfo.LINKLASTERR:
            return _to_log_detail(info.info.lastError)
        if info_type == LinkInfo.LINKNAME:
            return _decode(info.info.linkName)
        return info.info.rowCount

    def get_param_info(self, job: int, name: str) -> ParamInfo:
        info = DSPARAMINFO()
        self._check(self.lib.DSGetParamInfo(job, _encode(name), ctypes.byref(info)), "DSGetParamInfo")

        return ParamInfo(
            param_type=info.paramType,
            help_text=_decode(info.helpText) or "",
            prompt=_decode(info.paramPrompt) or "",
            prompt_at_run=bool(info.promptAtRun),
            default_value=_to_param_value(info.defaultValue),
            design_default_value=_to_param_value(info.desDefaultValue),
            list_values=read_str_list(info.listValues),
            design_list_values=read_str_list(info.desListValues),
        )

    # Log

    def log_event(self, job: int, event_type: int, message: str) -> None:
        self._check(self.lib.DSLogEvent(job, event_type, None, _encode(message)), "DSLogEvent")

    def find_first_log_entry(
        self,
        job: int,
        event_type: int = LogType.ANY,
        start_time: float = 0,
        end_time: float = 0,
        max_number: int = 0,
    ) -> LogEvent:
        event = DSLOGEVENT()
        status = self.lib.DSFindFirstLogEntry(
            job, event_type, int(start_time), int(end_time), max_number, ctypes.byref(event)
        )
        self._check(status, "DSFindFirstLogEntry")
        return LogEvent(event.eventId, event.timestamp, event.type, _decode(event.message) or "")

    def find_next_log_entry(self, job: int) -> LogEvent:
        event = DSLOGEVENT()
        self._check(self.lib.DSFindNextLogEntry(job, ctypes.byref(event)), "DSFindNextLogEntry")
        return LogEvent(event.eventId, event.timestamp, event.type, _decode(event.message) or "")

    def get_log_entry(self, job: int, event_id: int) -> LogDetail:
        detail = DSLOGDETAIL()
        self._check(self.lib.DSGetLogEntry(job, event_id, ctypes.byref(detail)), "DSGetLogEntry")
        return _to_log_detail(detail)

    def get_newest_log_id(self, job: int, event_type: int = LogType.ANY) -> int:
        event_id = self.lib.DSGetNewestLogId(job, event_type)
        if event_id < 0:
            raise self._last_error("DSGetNewestLogId")
        return event_id
