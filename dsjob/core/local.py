"""
SQLite-backed job engine for offline use and testing.

The engine keeps a catalog of projects and jobs (see catalog.py) and the
run state of every job. A run never executes anything: it is recorded as
started and is completed lazily, the first time anybody looks at the job
after its configured duration has passed. This lets separate dsjob
processes start, wait for and inspect the same job.
"""

import os
import socket
import time
from dataclasses import dataclass, field
from typing import Any

from .catalog import Catalog
from .constants import (
    DSJE_BADLINK,
    DSJE_BADNAME,
    DSJE_BADPARAM,
    DSJE_BADPROJECT,
    DSJE_BADSTAGE,
    DSJE_BADSTATE,
    DSJE_BADTYPE,
    DSJE_BADVALUE,
    DSJE_JOBLOCKED,
    DSJE_NOERROR,
    DSJE_NOMORE,
    DSJE_NOT_AVAILABLE,
    JobInfo,
    JobStatus,
    LimitType,
    LinkInfo,
    LogType,
    ParamType,
    ProjectInfo,
    RunMode,
    StageInfo,
)
from .database import DatabaseManager
from .engine import Engine, EngineConfig
from .errors import DSJobError
from .models import LogDetail, LogEvent, ParamInfo, ParamValue
from .params import coerce_value

ENCRYPTED_MASK = "********"


@dataclass
class LocalProject:
    project_id: int
    name: str


@dataclass
class LocalJob:
    """Open job handle. Parameter values and limits apply to the next run."""
    job_id: int
    project: LocalProject
    name: str
    params: dict[str, ParamValue] = field(default_factory=dict)
    limits: dict[int, int] = field(default_factory=dict)
    locked: bool = False
    log_cursor: list[LogEvent] = field(default_factory=list)


def _process_alive(pid: int) -> bool:
    if pid == os.getpid():
        return True
    if os.name == "nt":
        # No signal-0 probe on Windows; treat the holder as alive
        return True
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        return True
    return True


class LocalEngine(Engine):
    """Job engine backed by a local SQLite database."""

    def __init__(self, config: EngineConfig | None = None, db: DatabaseManager | None = None):
        super().__init__(config)
        self.db = db or DatabaseManager(self.config.local_db_path)
        self.owner = os.getpid()
        self.server: dict[str, str | None] = {}
        self._last_error = DSJE_NOERROR
        self._last_error_msg: list[str] = []

    def _fail(self, status: int, message: str, record: bool = True) -> DSJobError:
        """Build the error for a failed call, remembering it as the last error."""
        self._last_error = status
        if record:
            self._last_error_msg = message.splitlines()
        error = DSJobError(status, message)
        self.logger.debug(f"{error.name}: {message}")
        return error

    # Session

    def set_server_params(self, domain, user, password, server) -> None:
        self.server = {"domain": domain, "user": user, "server": server}
        self.logger.debug(f"Local engine ignores connection details (server={server}, user={user})")

    def get_last_error(self) -> int:
        return self._last_error

    def get_last_error_msg(self, project: Any = None) -> list[str]:
        return list(self._last_error_msg)

    def close(self) -> None:
        self.db.close()

    # Handles

    def open_project(self, name: str) -> LocalProject:
        row = self.db.get_project(name)
        if row is None:
            raise self._fail(DSJE_BADPROJECT, f"Project '{name}' does not exist")
        return LocalProject(row["id"], row["name"])

    def close_project(self, project: LocalProject) -> None:
        self.logger.debug(f"Closed project {project.name}")

    def open_job(self, project: LocalProject, name: str) -> LocalJob:
        row = self.db.get_job(project.project_id, name)
        if row is None:
            raise self._fail(DSJE_BADNAME, f"Job '{name}' not found in project '{project.name}'")
        return LocalJob(row["id"], project, row["name"])

    def close_job(self, job: LocalJob) -> None:
        if job.locked:
            self.unlock_job(job)
        self.logger.debug(f"Closed job {job.name}")

    # Job control

    def lock_job(self, job: LocalJob) -> None:
        holder = self.db.acquire_lock(job.job_id, self.owner)
        if holder is not None and not _process_alive(holder):
            self.logger.info(f"Breaking stale lock on {job.name} held by process {holder}")
            self.db.release_lock(job.job_id)
            holder = self.db.acquire_lock(job.job_id, self.owner)

        if holder is not None:
            raise self._fail(DSJE_JOBLOCKED, f"Job '{job.name}' is locked by process {holder}")
        job.locked = True

    def unlock_job(self, job: LocalJob) -> None:
        self.db.release_lock(job.job_id, self.owner)
        job.locked = False

    def set_job_limit(self, job: LocalJob, limit_type: int, value: int) -> None:
        try:
            limit_type = LimitType(limit_type)
        except ValueError:
            raise self._fail(DSJE_BADTYPE, f"Unknown limit type {limit_type}") from None
        if value < 0:
            raise self._fail(DSJE_BADVALUE, f"Invalid {limit_type.name.lower()} limit {value}")
        job.limits[limit_type] = value

    def set_param(self, job: LocalJob, name: str, value: ParamValue) -> None:
        param = self.db.get_param(job.job_id, name)
        if param is None:
            raise self._fail(DSJE_BADPARAM, f"Parameter '{name}' not defined for job '{job.name}'")
        if value.param_type != param["param_type"]:
            raise self._fail(
                DSJE_BADTYPE,
                f"Parameter '{name}' expects type {param['param_type']}, got {value.param_type}",
            )
        if param["param_type"] == ParamType.LIST and param["list_values"] and value.value not in param["list_values"]:
            raise self._fail(DSJE_BADVALUE, f"'{value.value}' is not a valid value for parameter '{name}'")
        job.params[name] = value

    def run_job(self, job: LocalJob, mode: RunMode) -> None:
        try:
            mode = RunMode(mode)
        except ValueError:
            raise self._fail(DSJE_BADTYPE, f"Unknown run mode {mode}") from None

        row = self._refresh(job.job_id)
        if row["status"] == JobStatus.RUNNING:
            raise self._fail(DSJE_BADSTATE, f"Job '{job.name}' is already running")
        if not row["compiled"] or row["status"] == JobStatus.NOTRUNNABLE:
            raise self._fail(DSJE_BADSTATE, f"Job '{job.name}' is not compiled")

        now = time.time()
        self.db.update_job(
            job.job_id,
            status=int(JobStatus.RUNNING),
            run_mode=int(mode),
            start_time=now,
            wave_number=row["wave_number"] + 1,
            warn_limit=job.limits.get(LimitType.WARN),
            row_limit=job.limits.get(LimitType.ROWS),
        )

        lines = [f"Starting Job {job.name}."]
        if mode is not RunMode.NORMAL:
            lines[0] = f"Starting Job {job.name} ({mode.name.lower()} mode)."
        for name, value in self._effective_params(job).items():
            lines.append(f"{name} = {value}")
        self.db.add_log_entry(job.job_id, LogType.STARTED, "\n".join(lines), now)
        self.logger.info(f"Started job {job.name} (wave {row['wave_number'] + 1}, mode {mode.name})")

        self._refresh(job.job_id)

    def wait_for_job(self, job: LocalJob, timeout: float | None = None) -> None:
        if timeout is None:
            timeout = self.config.wait_timeout
        try:
            self.poll_for_job(job, timeout)
        except DSJobError as e:
            raise self._fail(e.status, e.message) from None

    def stop_job(self, job: LocalJob) -> None:
        row = self._refresh(job.job_id)
        if row["status"] != JobStatus.RUNNING:
            self.logger.debug(f"Job {job.name} is not running, nothing to stop")
            return

        with self.db.transaction():
            if not self.db.finish_run(job.job_id, JobStatus.STOPPED):
                self.logger.debug(f"Job {job.name} finished before it could be stopped")
                return
            self.db.add_log_entry(job.job_id, LogType.INFO, f"Job {job.name} stopped by user request.")
        self.logger.info(f"Stopped job {job.name}")

    # Information

    def get_project_list(self) -> list[str]:
        return self.db.list_projects()

    def get_project_info(self, project: LocalProject, info_type: int) -> Any:
        if info_type == ProjectInfo.JOBLIST:
            jobs = self.db.list_jobs(project.project_id)
            if not jobs:
                raise self._fail(DSJE_NOT_AVAILABLE, "No jobs in project", record=False)
            return jobs
        if info_type == ProjectInfo.PROJECTNAME:
            return project.name
        if info_type == ProjectInfo.HOSTNAME:
            row = self.db.get_project(project.name)
            return row["host"] or socket.gethostname()
        raise self._fail(DSJE_BADTYPE, f"Unknown project info type {info_type}")

    def get_job_info(self, job: LocalJob, info_type: int) -> Any:
        row = self._refresh(job.job_id)

        if info_type == JobInfo.JOBSTATUS:
            return row["status"]
        if info_type == JobInfo.JOBNAME:
            return row["name"]
        if info_type == JobInfo.JOBCONTROLLER:
            return self._available(row["controller"])
        if info_type == JobInfo.JOBSTARTTIMESTAMP:
            return self._available(row["start_time"])
        if info_type == JobInfo.JOBWAVENO:
            return row["wave_number"]
        if info_type == JobInfo.PARAMLIST:
            return self._available(self.db.list_params(job.job_id))
        if info_type == JobInfo.STAGELIST:
            return self._available([stage["name"] for stage in self.db.list_stages(job.job_id)])
        if info_type == JobInfo.USERSTATUS:
            return self._available(row["user_status"])
        raise self._fail(DSJE_BADTYPE, f"Unknown job info type {info_type}")

    def get_stage_info(self, job: LocalJob, stage: str, info_type: int) -> Any:
        row = self._get_stage(job, stage)

        if info_type == StageInfo.STAGELASTERR:
            return self._available(self._log_detail(job, row["last_error_id"]))
        if info_type == StageInfo.STAGENAME:
            return row["name"]
        if info_type == StageInfo.STAGETYPE:
            return row["type_name"] or ""
        if info_type == StageInfo.STAGEINROWNUM:
            return row["in_row_num"]
        if info_type == StageInfo.LINKLIST:
            return self._available([link["name"] for link in self.db.list_links(row["id"])])
        raise self._fail(DSJE_BADTYPE, f"Unknown stage info type {info_type}")

    def get_link_info(self, job: LocalJob, stage: str, link: str, info_type: int) -> Any:
        stage_row = self._get_stage(job, stage)
        row = self.db.get_link(stage_row["id"], link)
        if row is None:
            raise self._fail(DSJE_BADLINK, f"Link '{link}' not found on stage '{stage}'")

        if info_type == LinkInfo.LINKLASTERR:
            return self._available(self._log_detail(job, row["last_error_id"]))
        if info_type == LinkInfo.LINKNAME:
            return row["name"]
        if info_type == LinkInfo.LINKROWCOUNT:
            return row["row_count"]
        raise self._fail(DSJE_BADTYPE, f"Unknown link info type {info_type}")

    def get_param_info(self, job: LocalJob, name: str) -> ParamInfo:
        param = self.db.get_param(job.job_id, name)
        if param is None:
            raise self._fail(DSJE_BADPARAM, f"Parameter '{name}' not defined for job '{job.name}'")

        param_type = param["param_type"]
        return ParamInfo(
            param_type=param_type,
            help_text=param["help_text"] or "",
            prompt=param["prompt"] or "",
            prompt_at_run=bool(param["prompt_at_run"]),
            default_value=self._param_value(param_type, param["default_value"]),
            design_default_value=self._param_value(param_type, param["design_default"]),
            list_values=param["list_values"],
            design_list_values=param["design_list_values"],
        )

    # Log

    def log_event(self, job: LocalJob, event_type: int, message: str) -> None:
        if event_type not in (LogType.INFO, LogType.WARNING):
            raise self._fail(DSJE_BADTYPE, f"Cannot add log entries of type {event_type}")
        event_id = self.db.add_log_entry(job.job_id, event_type, message)
        self.logger.debug(f"Added log entry {event_id} to {job.name}")

    def find_first_log_entry(
        self,
        job: LocalJob,
        event_type: int = LogType.ANY,
        start_time: float = 0,
        end_time: float = 0,
        max_number: int = 0,
    ) -> LogEvent:
        self._check_log_type(event_type)
        if max_number < 0:
            raise self._fail(DSJE_BADVALUE, f"Invalid maximum number of entries {max_number}")

        self._refresh(job.job_id)
        rows = self.db.get_log_entries(job.job_id, event_type, start_time, end_time, max_number)
        job.log_cursor = [
            LogEvent(row["event_id"], row["timestamp"], row["type"], (row["message"] or "").split("\n")[0])
            for row in rows
        ]
        return self.find_next_log_entry(job)

    def find_next_log_entry(self, job: LocalJob) -> LogEvent:
        if not job.log_cursor:
            raise self._fail(DSJE_NOMORE, "No more log entries", record=False)
        return job.log_cursor.pop(0)

    def get_log_entry(self, job: LocalJob, event_id: int) -> LogDetail:
        detail = self._log_detail(job, event_id)
        if detail is None:
            raise self._fail(DSJE_BADVALUE, f"Event {event_id} not found in the log of '{job.name}'")
        return detail

    def get_newest_log_id(self, job: LocalJob, event_type: int = LogType.ANY) -> int:
        self._check_log_type(event_type)
        self._refresh(job.job_id)
        newest = self.db.get_newest_log_id(job.job_id, event_type)
        if newest is None:
            raise self._fail(DSJE_NOMORE, f"No matching log entries for '{job.name}'")
        return newest

    # Catalog

    def import_catalog(self, catalog: Catalog) -> dict[str, int]:
        """Load projects and job definitions. Existing jobs keep their run state and log."""
        for project in catalog.projects:
            project_id = self.db.insert_project(project.name, project.host)

            for job in project.jobs:
                with self.db.transaction():
                    job_id = self.db.upsert_job(project_id, job.model_dump(exclude={"stages", "params"}))
                    self.db.clear_job_definition(job_id)

                    for stage in job.stages:
                        stage_id = self.db.insert_stage(job_id, {"name": stage.name, "type_name": stage.type})
                        for link in stage.links:
                            self.db.insert_link(stage_id, {"name": link.name, "design_rows": link.rows})

                    for param in job.params:
                        default = None if param.default is None else str(param.default)
                        design_default = default if param.design_default is None else str(param.design_default)
                        self.db.insert_param(job_id, {
                            "name": param.name,
                            "param_type": param.type,
                            "help_text": param.help_text,
                            "prompt": param.prompt,
                            "prompt_at_run": param.prompt_at_run,
                            "default_value": default,
                            "design_default": design_default,
                            "list_values": param.list_values,
                            "design_list_values": (
                                param.list_values if param.design_list_values is None else param.design_list_values
                            ),
                        })

                self.logger.debug(f"Imported job {project.name}/{job.name}")

        return self.db.get_stats()

    # Internals

    def _available(self, value: Any) -> Any:
        if value is None or value == "" or value == []:
            raise self._fail(DSJE_NOT_AVAILABLE, "Information not available", record=False)
        return value

    def _check_log_type(self, event_type: int) -> None:
        try:
            LogType(event_type)
        except ValueError:
            raise self._fail(DSJE_BADTYPE, f"Unknown log event type {event_type}") from None

    def _get_stage(self, job: LocalJob, stage: str):
        self._refresh(job.job_id)
        row = self.db.get_stage(job.job_id, stage)
        if row is None:
            raise self._fail(DSJE_BADSTAGE, f"Stage '{stage}' not found in job '{job.name}'")
        return row

    def _log_detail(self, job: LocalJob, event_id: int | None) -> LogDetail | None:
        if event_id is None:
            return None
        row = self.db.get_log_entry(job.job_id, event_id)
        if row is None:
            return None
        return LogDetail(row["event_id"], row["timestamp"], row["type"], (row["message"] or "").split("\n"))

    def _param_value(self, param_type: int, text: str | None) -> ParamValue | None:
        if text is None:
            return None
        try:
            return coerce_value(param_type, text)
        except DSJobError:
            self.logger.warning(f"Stored default '{text}' does not match parameter type {param_type}")
            return ParamValue(ParamType.STRING, text)

    def _effective_params(self, job: LocalJob) -> dict[str, str]:
        """Parameter values a run starts with, encrypted ones masked."""
        values = {}
        for name in self.db.list_params(job.job_id):
            param = self.db.get_param(job.job_id, name)
            if name in job.params:
                text = job.params[name].format()
            else:
                text = param["default_value"] or ""
            if param["param_type"] == ParamType.ENCRYPTED:
                text = ENCRYPTED_MASK
            values[name] = text
        return values

    def _refresh(self, job_id: int):
        """Current job row, completing the run first if it is due."""
        row = self.db.get_job_by_id(job_id)
        if row["status"] == JobStatus.RUNNING and time.time() >= row["start_time"] + row["duration"]:
            self._complete_run(row)
            row = self.db.get_job_by_id(job_id)
        return row

    def _complete_run(self, row) -> None:
        """Finish a due run. Only the connection that claims the run writes its results."""
        job_id = row["id"]
        name = row["name"]
        finished = row["start_time"] + row["duration"]
        mode = RunMode(row["run_mode"] or RunMode.NORMAL)
        outcome = row["outcome"]

        if mode is RunMode.RESET:
            with self.db.transaction():
                if not self.db.finish_run(job_id, JobStatus.RESET):
                    return
                for stage in self.db.list_stages(job_id):
                    self.db.update_stage(stage["id"], in_row_num=0, last_error_id=None)
                    for link in self.db.list_links(stage["id"]):
                        self.db.update_link(link["id"], row_count=0, last_error_id=None)
                self.db.add_log_entry(job_id, LogType.RESET, f"Job {name} reset.", finished)
            return

        warnings = row["warnings"]
        if outcome == "warn" and warnings == 0:
            warnings = 1
        warn_limit = row["warn_limit"] or 0
        aborted = warn_limit > 0 and warnings >= warn_limit
        if aborted:
            warnings = warn_limit
        failed = aborted or outcome == "fail"

        if mode is RunMode.VALIDATE:
            if failed:
                status = JobStatus.VALFAILED
            elif warnings:
                status = JobStatus.VALWARN
            else:
                status = JobStatus.VALOK
        else:
            if failed:
                status = JobStatus.RUNFAILED
            elif warnings:
                status = JobStatus.RUNWARN
            else:
                status = JobStatus.RUNOK

        with self.db.transaction():
            if not self.db.finish_run(job_id, status):
                self.logger.debug(f"Run of {name} was already completed")
                return

            stages = self.db.list_stages(job_id)
            first_stage = stages[0] if stages else None
            last_error_id = None
            for n in range(warnings):
                where = f"{first_stage['name']}: " if first_stage else ""
                last_error_id = self.db.add_log_entry(
                    job_id, LogType.WARNING, f"{where}Warning {n + 1} raised by job {name}.", finished
                )

            if aborted:
                last_error_id = self.db.add_log_entry(
                    job_id, LogType.FATAL, f"Job {name} aborted: {warn_limit} warning limit reached.", finished
                )
            elif outcome == "fail":
                last_error_id = self.db.add_log_entry(job_id, LogType.FATAL, f"Job {name} aborted.", finished)

            if mode is not RunMode.VALIDATE:
                self._record_rows(row, stages)

            if first_stage is not None and last_error_id is not None:
                self.db.update_stage(first_stage["id"], last_error_id=last_error_id)
                links = self.db.list_links(first_stage["id"])
                if links and failed:
                    self.db.update_link(links[0]["id"], last_error_id=last_error_id)

            if not failed:
                self.db.add_log_entry(job_id, LogType.INFO, f"Job {name} completed successfully.", finished)

        self.logger.info(f"Job {name} finished with status {status.name}")

    def _record_rows(self, row, stages) -> None:
        """Set link row counts for a normal run, honouring the row limit."""
        row_limit = row["row_limit"] or 0
        for stage in stages:
            in_rows = 0
            for link in self.db.list_links(stage["id"]):
                count = link["design_rows"]
                if row_limit > 0:
                    count = min(count, row_limit)
                self.db.update_link(link["id"], row_count=count)
                in_rows = max(in_rows, count)
            self.db.update_stage(stage["id"], in_row_num=in_rows)
