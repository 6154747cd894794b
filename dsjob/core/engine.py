"""
Abstract interface to a job engine.

Every operation the command line needs is a method here. Backends raise
DSJobError instead of returning status codes, and the context managers make
sure handles are closed and locks released whatever happens in between.
"""

import logging
import time
from abc import ABC, abstractmethod
from collections.abc import Iterator
from contextlib import contextmanager
from enum import Enum
from typing import Any

from pydantic import BaseModel

from ..utils.config import ConfigManager
from .constants import (
    DSJE_NOMORE,
    DSJE_TIMEOUT,
    JobInfo,
    JobStatus,
    LogType,
    RunMode,
)
from .errors import DSJobError
from .models import LogDetail, LogEvent, ParamInfo, ParamValue


class EngineBackend(Enum):
    """Available engine implementations."""
    VENDOR = "vendor"
    LOCAL = "local"


class EngineConfig(BaseModel):
    """Configuration for the engine connection."""
    backend: EngineBackend = EngineBackend.VENDOR
    library_path: str | None = None
    local_db_path: str | None = None
    poll_interval: float = 1.0
    wait_timeout: float | None = None


class Engine(ABC):
    """Operations offered by a job engine client library."""

    def __init__(self, config: EngineConfig | None = None):
        self.config = config or EngineConfig()
        self.logger = logging.getLogger(__name__)

    # Session

    @abstractmethod
    def set_server_params(
        self,
        domain: str | None,
        user: str | None,
        password: str | None,
        server: str | None,
    ) -> None:
        """Set the connection details used by the next open_project call."""

    @abstractmethod
    def get_last_error(self) -> int:
        """Status code of the last failed call."""

    @abstractmethod
    def get_last_error_msg(self, project: Any = None) -> list[str]:
        """Lines of the last error message recorded by the engine, if any."""

    def close(self) -> None:
        """Release engine-wide resources."""

    # Handles

    @abstractmethod
    def open_project(self, name: str) -> Any:
        ...

    @abstractmethod
    def close_project(self, project: Any) -> None:
        ...

    @abstractmethod
    def open_job(self, project: Any, name: str) -> Any:
        ...

    @abstractmethod
    def close_job(self, job: Any) -> None:
        ...

    # Job control

    @abstractmethod
    def lock_job(self, job: Any) -> None:
        ...

    @abstractmethod
    def unlock_job(self, job: Any) -> None:
        ...

    @abstractmethod
    def set_job_limit(self, job: Any, limit_type: int, value: int) -> None:
        ...

    @abstractmethod
    def set_param(self, job: Any, name: str, value: ParamValue) -> None:
        ...

    @abstractmethod
    def run_job(self, job: Any, mode: RunMode) -> None:
        ...

    @abstractmethod
    def wait_for_job(self, job: Any, timeout: float | None = None) -> None:
        """Block until the job is no longer running."""

    @abstractmethod
    def stop_job(self, job: Any) -> None:
        ...

    # Information

    @abstractmethod
    def get_project_list(self) -> list[str]:
        ...

    @abstractmethod
    def get_project_info(self, project: Any, info_type: int) -> Any:
        ...

    @abstractmethod
    def get_job_info(self, job: Any, info_type: int) -> Any:
        ...

    @abstractmethod
    def get_stage_info(self, job: Any, stage: str, info_type: int) -> Any:
        ...

    @abstractmethod
    def get_link_info(self, job: Any, stage: str, link: str, info_type: int) -> Any:
        ...

    @abstractmethod
    def get_param_info(self, job: Any, name: str) -> ParamInfo:
        ...

    # Log

    @abstractmethod
    def log_event(self, job: Any, event_type: int, message: str) -> None:
        ...

    @abstractmethod
    def find_first_log_entry(
        self,
        job: Any,
        event_type: int = LogType.ANY,
        start_time: float = 0,
        end_time: float = 0,
        max_number: int = 0,
    ) -> LogEvent:
        """First matching log entry. Raises DSJE_NOMORE when there is none."""

    @abstractmethod
    def find_next_log_entry(self, job: Any) -> LogEvent:
        ...

    @abstractmethod
    def get_log_entry(self, job: Any, event_id: int) -> LogDetail:
        ...

    @abstractmethod
    def get_newest_log_id(self, job: Any, event_type: int = LogType.ANY) -> int:
        """Id of the newest matching entry. Raises DSJobError when there is none."""

    # Helpers shared by all backends

    @contextmanager
    def project(self, name: str) -> Iterator[Any]:
        handle = self.open_project(name)
        try:
            yield handle
        finally:
            try:
                self.close_project(handle)
            except DSJobError as e:
                self.logger.debug(f"Ignoring failure closing project {name}: {e}")

    @contextmanager
    def job(self, project: Any, name: str) -> Iterator[Any]:
        handle = self.open_job(project, name)
        try:
            yield handle
        finally:
            try:
                self.close_job(handle)
            except DSJobError as e:
                self.logger.debug(f"Ignoring failure closing job {name}: {e}")

    @contextmanager
    def locked(self, job: Any) -> Iterator[Any]:
        self.lock_job(job)
        try:
            yield job
        finally:
            try:
                self.unlock_job(job)
            except DSJobError as e:
                self.logger.warning(f"Failed to unlock job: {e}")

    def iter_log_entries(
        self,
        job: Any,
        event_type: int = LogType.ANY,
        start_time: float = 0,
        end_time: float = 0,
        max_number: int = 0,
    ) -> Iterator[LogEvent]:
        """Walk the job log. Running out of entries ends the iteration."""
        try:
            event = self.find_first_log_entry(job, event_type, start_time, end_time, max_number)
            while True:
                yield event
                event = self.find_next_log_entry(job)
        except DSJobError as e:
            if e.status != DSJE_NOMORE:
                raise

    def poll_for_job(self, job: Any, timeout: float | None = None) -> int:
        """Poll the job status until it finishes; returns the final status."""
        deadline = None if timeout is None else time.monotonic() + timeout
        while True:
            status = self.get_job_info(job, JobInfo.JOBSTATUS)
            if status != JobStatus.RUNNING:
                return status
            if deadline is not None and time.monotonic() >= deadline:
                raise DSJobError(DSJE_TIMEOUT, "Timed out waiting for job")
            self.logger.debug(f"Job still running (status {status}), polling again")
            time.sleep(self.config.poll_interval)


def load_engine_config(config_manager: ConfigManager | None = None) -> EngineConfig:
    """Load engine configuration."""
    cm = config_manager or ConfigManager()

    engine_config = cm.get_engine_config()
    return EngineConfig(
        backend=EngineBackend(engine_config.get("backend", "vendor")),
        library_path=engine_config.get("library_path"),
        local_db_path=engine_config.get("local_db_path"),
        poll_interval=engine_config.get("poll_interval", 1.0),
        wait_timeout=engine_config.get("wait_timeout"),
    )


def get_engine(config: EngineConfig) -> Engine:
    """Create the engine selected by the configuration."""
    if config.backend == EngineBackend.LOCAL:
        from .local import LocalEngine
        return LocalEngine(config)

    from .vendor import VendorEngine
    return VendorEngine(config)
