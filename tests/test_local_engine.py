"""
Tests for the SQLite-backed local engine.
"""

import logging
import os
import sqlite3
import tempfile
import time

import pytest

from dsjob.core.catalog import Catalog, CatalogJob, CatalogProject, CatalogStage
from dsjob.core.constants import (
    DSJE_BADNAME,
    DSJE_BADPARAM,
    DSJE_BADPROJECT,
    DSJE_BADSTAGE,
    DSJE_BADSTATE,
    DSJE_BADTYPE,
    DSJE_BADVALUE,
    DSJE_JOBLOCKED,
    DSJE_NOMORE,
    DSJE_NOT_AVAILABLE,
    DSJE_TIMEOUT,
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
from dsjob.core.engine import EngineBackend, EngineConfig
from dsjob.core.errors import DSJobError
from dsjob.core.local import LocalEngine
from dsjob.core.models import ParamValue
from sample_catalog import SAMPLE_CATALOG


class TestLocalEngine:
    """Test cases for LocalEngine."""

    def setup_method(self):
        """Set up an engine with the sample catalog loaded."""
        self.temp_db = tempfile.NamedTemporaryFile(delete=False, suffix='.db')
        self.temp_db.close()
        config = EngineConfig(backend=EngineBackend.LOCAL, local_db_path=self.temp_db.name, poll_interval=0.01)
        self.engine = LocalEngine(config)
        self.stats = self.engine.import_catalog(Catalog.model_validate(SAMPLE_CATALOG))

    def teardown_method(self):
        """Clean up test database."""
        self.engine.close()
        if os.path.exists(self.temp_db.name):
            os.unlink(self.temp_db.name)

    def _open(self, job_name):
        project = self.engine.open_project('dstage1')
        return self.engine.open_job(project, job_name)

    def _run(self, job_name, mode=RunMode.NORMAL, **limits):
        job = self._open(job_name)
        with self.engine.locked(job):
            for limit_type, value in limits.items():
                self.engine.set_job_limit(job, LimitType[limit_type.upper()], value)
            self.engine.run_job(job, mode)
        return job

    def test_import_catalog(self):
        """Importing counts every entity of the catalog."""
        assert self.stats == {
            'projects': 2,
            'jobs': 5,
            'stages': 4,
            'links': 5,
            'params': 5,
            'log_entries': 0,
        }
        assert self.engine.get_project_list() == ['dstage1', 'empty']

    def test_reimport_keeps_run_state(self):
        """Importing the catalog again keeps wave numbers and the log."""
        job = self._run('LoadCustomers')
        self.engine.import_catalog(Catalog.model_validate(SAMPLE_CATALOG))

        assert self.engine.get_job_info(job, JobInfo.JOBWAVENO) == 1
        assert self.engine.get_newest_log_id(job) == 1
        assert self.engine.db.get_stats()['stages'] == 4

    def test_failed_job_import_is_rolled_back(self):
        """A job definition that cannot be stored leaves nothing behind."""
        job = CatalogJob.model_construct(
            name='Duplicated',
            compiled=True,
            duration=0,
            outcome='ok',
            warnings=0,
            controller=None,
            user_status=None,
            stages=[CatalogStage(name='Same'), CatalogStage(name='Same')],
            params=[],
        )
        catalog = Catalog(projects=[CatalogProject(name='dstage1', jobs=[job])])

        with pytest.raises(sqlite3.IntegrityError):
            self.engine.import_catalog(catalog)

        assert self.engine.db.get_stats() == self.stats
        project = self.engine.open_project('dstage1')
        with pytest.raises(DSJobError) as exc_info:
            self.engine.open_job(project, 'Duplicated')
        assert exc_info.value.status == DSJE_BADNAME

    def test_open_unknown_project(self):
        """Opening a missing project records the error."""
        with pytest.raises(DSJobError) as exc_info:
            self.engine.open_project('nope')

        assert exc_info.value.status == DSJE_BADPROJECT
        assert self.engine.get_last_error() == DSJE_BADPROJECT
        assert self.engine.get_last_error_msg() == ["Project 'nope' does not exist"]
        assert exc_info.value.name == 'DSJE_BADPROJECT'

    def test_failures_are_logged_by_name(self, caplog):
        with caplog.at_level(logging.DEBUG, logger='dsjob.core.engine'):
            with pytest.raises(DSJobError):
                self.engine.open_project('nope')

        assert "DSJE_BADPROJECT: Project 'nope' does not exist" in caplog.text

    def test_open_unknown_job(self):
        project = self.engine.open_project('dstage1')
        with pytest.raises(DSJobError) as exc_info:
            self.engine.open_job(project, 'Missing')
        assert exc_info.value.status == DSJE_BADNAME

    def test_project_info(self):
        """Test job list, project name and host name."""
        with self.engine.project('dstage1') as project:
            assert self.engine.get_project_info(project, ProjectInfo.JOBLIST) == [
                'FailJob', 'LoadCustomers', 'SlowJob', 'Uncompiled', 'WarnJob',
            ]
            assert self.engine.get_project_info(project, ProjectInfo.PROJECTNAME) == 'dstage1'
            assert self.engine.get_project_info(project, ProjectInfo.HOSTNAME) == 'etl-host'

    def test_empty_project_has_no_job_list(self):
        """An empty job list is not available, and is not recorded as an error message."""
        with self.engine.project('empty') as project:
            with pytest.raises(DSJobError) as exc_info:
                self.engine.get_project_info(project, ProjectInfo.JOBLIST)

        assert exc_info.value.status == DSJE_NOT_AVAILABLE
        assert self.engine.get_last_error_msg() == []

    def test_new_job_info(self):
        """A job that never ran has no start time and wave number 0."""
        job = self._open('LoadCustomers')

        assert self.engine.get_job_info(job, JobInfo.JOBSTATUS) == JobStatus.NOTRUNNING
        assert self.engine.get_job_info(job, JobInfo.JOBNAME) == 'LoadCustomers'
        assert self.engine.get_job_info(job, JobInfo.JOBCONTROLLER) == 'Nightly'
        assert self.engine.get_job_info(job, JobInfo.JOBWAVENO) == 0
        assert self.engine.get_job_info(job, JobInfo.USERSTATUS) == 'loaded'
        assert self.engine.get_job_info(job, JobInfo.PARAMLIST) == [
            'SourceDir', 'BatchSize', 'Threshold', 'Region', 'DbPassword',
        ]
        assert self.engine.get_job_info(job, JobInfo.STAGELIST) == ['ReadCustomers', 'Transform']

        with pytest.raises(DSJobError) as exc_info:
            self.engine.get_job_info(job, JobInfo.JOBSTARTTIMESTAMP)
        assert exc_info.value.status == DSJE_NOT_AVAILABLE

    def test_uncompiled_job(self):
        """Uncompiled jobs cannot be run."""
        job = self._open('Uncompiled')
        assert self.engine.get_job_info(job, JobInfo.JOBSTATUS) == JobStatus.NOTRUNNABLE

        with pytest.raises(DSJobError) as exc_info:
            self.engine.run_job(job, RunMode.NORMAL)
        assert exc_info.value.status == DSJE_BADSTATE

    def test_normal_run(self):
        """A clean run finishes OK and records link row counts."""
        job = self._run('LoadCustomers')

        assert self.engine.get_job_info(job, JobInfo.JOBSTATUS) == JobStatus.RUNOK
        assert self.engine.get_job_info(job, JobInfo.JOBWAVENO) == 1
        assert self.engine.get_job_info(job, JobInfo.JOBSTARTTIMESTAMP) > 0
        assert self.engine.get_stage_info(job, 'Transform', StageInfo.STAGEINROWNUM) == 100
        assert self.engine.get_link_info(job, 'Transform', 'lnkReject', LinkInfo.LINKROWCOUNT) == 20

        with pytest.raises(DSJobError) as exc_info:
            self.engine.get_stage_info(job, 'Transform', StageInfo.STAGELASTERR)
        assert exc_info.value.status == DSJE_NOT_AVAILABLE

        events = list(self.engine.iter_log_entries(job))
        assert [event.type for event in events] == [LogType.STARTED, LogType.INFO]
        assert events[1].message == 'Job LoadCustomers completed successfully.'

    def test_run_logs_parameters(self):
        """The start entry lists parameter values with encrypted ones masked."""
        job = self._open('LoadCustomers')
        with self.engine.locked(job):
            self.engine.set_param(job, 'BatchSize', ParamValue(ParamType.INTEGER, 1000))
            self.engine.run_job(job, RunMode.NORMAL)

        detail = self.engine.get_log_entry(job, 0)
        assert detail.type == LogType.STARTED
        assert detail.full_message[0] == 'Starting Job LoadCustomers.'
        assert 'SourceDir = /data/in' in detail.full_message
        assert 'BatchSize = 1000' in detail.full_message
        assert 'DbPassword = ********' in detail.full_message

    def test_row_limit(self):
        """The row limit caps every link of a normal run."""
        job = self._run('LoadCustomers', rows=50)

        assert self.engine.get_link_info(job, 'ReadCustomers', 'lnkRaw', LinkInfo.LINKROWCOUNT) == 50
        assert self.engine.get_link_info(job, 'Transform', 'lnkOut', LinkInfo.LINKROWCOUNT) == 50
        assert self.engine.get_link_info(job, 'Transform', 'lnkReject', LinkInfo.LINKROWCOUNT) == 20
        assert self.engine.get_stage_info(job, 'Transform', StageInfo.STAGEINROWNUM) == 50

    def test_run_with_warnings(self):
        """Warnings are logged and the last one becomes the stage's last error."""
        job = self._run('WarnJob')

        assert self.engine.get_job_info(job, JobInfo.JOBSTATUS) == JobStatus.RUNWARN
        warnings = list(self.engine.iter_log_entries(job, LogType.WARNING))
        assert [event.event_id for event in warnings] == [1, 2, 3]

        last_error = self.engine.get_stage_info(job, 'Only', StageInfo.STAGELASTERR)
        assert last_error.event_id == 3
        assert last_error.type == LogType.WARNING

    def test_warn_limit_aborts_run(self):
        """Reaching the warning limit aborts the run."""
        job = self._run('WarnJob', warn=2)

        assert self.engine.get_job_info(job, JobInfo.JOBSTATUS) == JobStatus.RUNFAILED
        assert len(list(self.engine.iter_log_entries(job, LogType.WARNING))) == 2
        assert self.engine.get_newest_log_id(job, LogType.FATAL) == 3

        last_error = self.engine.get_link_info(job, 'Only', 'lnkA', LinkInfo.LINKLASTERR)
        assert last_error.type == LogType.FATAL
        assert last_error.full_message == ['Job WarnJob aborted: 2 warning limit reached.']

    def test_warn_limit_zero_means_no_limit(self):
        job = self._run('WarnJob', warn=0)
        assert self.engine.get_job_info(job, JobInfo.JOBSTATUS) == JobStatus.RUNWARN

    def test_failed_run(self):
        job = self._run('FailJob')

        assert self.engine.get_job_info(job, JobInfo.JOBSTATUS) == JobStatus.RUNFAILED
        assert self.engine.get_newest_log_id(job, LogType.FATAL) == 1
        assert self.engine.get_stage_info(job, 'Broken', StageInfo.STAGELASTERR).event_id == 1

    def test_validate_run(self):
        """Validation does not move any rows."""
        job = self._run('LoadCustomers', mode=RunMode.VALIDATE)

        assert self.engine.get_job_info(job, JobInfo.JOBSTATUS) == JobStatus.VALOK
        assert self.engine.get_link_info(job, 'Transform', 'lnkOut', LinkInfo.LINKROWCOUNT) == 0

        failed = self._run('FailJob', mode=RunMode.VALIDATE)
        assert self.engine.get_job_info(failed, JobInfo.JOBSTATUS) == JobStatus.VALFAILED

    def test_reset_run(self):
        """Resetting a failed job clears row counts and last errors."""
        job = self._run('FailJob')
        assert self.engine.get_link_info(job, 'Broken', 'lnkB', LinkInfo.LINKROWCOUNT) == 5

        self._run('FailJob', mode=RunMode.RESET)

        assert self.engine.get_job_info(job, JobInfo.JOBSTATUS) == JobStatus.RESET
        assert self.engine.get_job_info(job, JobInfo.JOBWAVENO) == 2
        assert self.engine.get_link_info(job, 'Broken', 'lnkB', LinkInfo.LINKROWCOUNT) == 0
        with pytest.raises(DSJobError) as exc_info:
            self.engine.get_link_info(job, 'Broken', 'lnkB', LinkInfo.LINKLASTERR)
        assert exc_info.value.status == DSJE_NOT_AVAILABLE
        assert self.engine.get_newest_log_id(job, LogType.RESET) == 3

    def test_running_job(self):
        """A long job stays running until it is stopped."""
        job = self._run('SlowJob')
        assert self.engine.get_job_info(job, JobInfo.JOBSTATUS) == JobStatus.RUNNING

        with pytest.raises(DSJobError) as exc_info:
            self.engine.run_job(job, RunMode.NORMAL)
        assert exc_info.value.status == DSJE_BADSTATE

        with pytest.raises(DSJobError) as exc_info:
            self.engine.wait_for_job(job, timeout=0.05)
        assert exc_info.value.status == DSJE_TIMEOUT

        self.engine.stop_job(job)
        assert self.engine.get_job_info(job, JobInfo.JOBSTATUS) == JobStatus.STOPPED
        self.engine.wait_for_job(job, timeout=0.05)

    def test_stop_finished_job_is_noop(self):
        job = self._run('LoadCustomers')
        self.engine.stop_job(job)
        assert self.engine.get_job_info(job, JobInfo.JOBSTATUS) == JobStatus.RUNOK

    def test_run_completed_once_across_engines(self):
        """A due run read by two engines is completed by only one of them."""
        job = self._run('SlowJob')
        self.engine.db.update_job(job.job_id, start_time=time.time() - 7200)
        stale = self.engine.db.get_job_by_id(job.job_id)
        assert stale['status'] == JobStatus.RUNNING

        other = LocalEngine(self.engine.config)
        try:
            assert other._refresh(job.job_id)['status'] == JobStatus.RUNOK
        finally:
            other.close()

        self.engine._complete_run(stale)

        events = list(self.engine.iter_log_entries(job))
        assert [event.type for event in events] == [LogType.STARTED, LogType.INFO]
        assert self.engine.get_job_info(job, JobInfo.JOBSTATUS) == JobStatus.RUNOK

    def test_stop_after_other_engine_completed(self):
        """Stopping a run another engine already finished changes nothing."""
        job = self._run('SlowJob')
        self.engine.db.update_job(job.job_id, start_time=time.time() - 7200)

        other = LocalEngine(self.engine.config)
        try:
            other._refresh(job.job_id)
        finally:
            other.close()

        self.engine.stop_job(job)

        assert self.engine.get_job_info(job, JobInfo.JOBSTATUS) == JobStatus.RUNOK
        events = list(self.engine.iter_log_entries(job))
        assert [event.type for event in events] == [LogType.STARTED, LogType.INFO]

    def test_lock_held_by_live_process(self):
        """A lock held by another running process cannot be taken."""
        job = self._open('LoadCustomers')
        self.engine.db.acquire_lock(job.job_id, os.getppid())

        with pytest.raises(DSJobError) as exc_info:
            self.engine.lock_job(job)
        assert exc_info.value.status == DSJE_JOBLOCKED

    @pytest.mark.skipif(os.name == 'nt', reason='stale locks are only detected on POSIX')
    def test_stale_lock_is_broken(self):
        """A lock left behind by a dead process is taken over."""
        job = self._open('LoadCustomers')
        self.engine.db.acquire_lock(job.job_id, 99999999)

        self.engine.lock_job(job)
        assert self.engine.db.get_job_by_id(job.job_id)['locked_by'] == os.getpid()

        self.engine.close_job(job)
        assert self.engine.db.get_job_by_id(job.job_id)['locked_by'] is None

    def test_set_param_errors(self):
        """Unknown parameters, wrong types and values outside a list are rejected."""
        job = self._open('LoadCustomers')

        with pytest.raises(DSJobError) as exc_info:
            self.engine.set_param(job, 'Missing', ParamValue(ParamType.STRING, 'x'))
        assert exc_info.value.status == DSJE_BADPARAM

        with pytest.raises(DSJobError) as exc_info:
            self.engine.set_param(job, 'BatchSize', ParamValue(ParamType.STRING, 'x'))
        assert exc_info.value.status == DSJE_BADTYPE

        with pytest.raises(DSJobError) as exc_info:
            self.engine.set_param(job, 'Region', ParamValue(ParamType.LIST, 'MARS'))
        assert exc_info.value.status == DSJE_BADVALUE

        self.engine.set_param(job, 'Region', ParamValue(ParamType.LIST, 'US'))
        assert job.params['Region'].value == 'US'

    def test_set_job_limit_errors(self):
        job = self._open('LoadCustomers')

        with pytest.raises(DSJobError) as exc_info:
            self.engine.set_job_limit(job, 9, 1)
        assert exc_info.value.status == DSJE_BADTYPE

        with pytest.raises(DSJobError) as exc_info:
            self.engine.set_job_limit(job, LimitType.ROWS, -1)
        assert exc_info.value.status == DSJE_BADVALUE

    def test_param_info(self):
        """Test parameter definitions with typed defaults."""
        job = self._open('LoadCustomers')

        source = self.engine.get_param_info(job, 'SourceDir')
        assert source.param_type == ParamType.PATHNAME
        assert source.help_text == 'Input directory'
        assert source.prompt == 'Source directory'
        assert source.default_value == ParamValue(ParamType.PATHNAME, '/data/in')

        batch = self.engine.get_param_info(job, 'BatchSize')
        assert batch.prompt_at_run is True
        assert batch.default_value == ParamValue(ParamType.INTEGER, 500)
        assert batch.design_default_value == ParamValue(ParamType.INTEGER, 500)

        threshold = self.engine.get_param_info(job, 'Threshold')
        assert threshold.default_value.format() == '0.25'

        region = self.engine.get_param_info(job, 'Region')
        assert region.list_values == ['EU', 'US', 'APAC']
        assert region.design_list_values == ['EU', 'US', 'APAC']

        with pytest.raises(DSJobError) as exc_info:
            self.engine.get_param_info(job, 'Missing')
        assert exc_info.value.status == DSJE_BADPARAM

    def test_unknown_stage(self):
        job = self._open('LoadCustomers')
        with pytest.raises(DSJobError) as exc_info:
            self.engine.get_stage_info(job, 'Missing', StageInfo.STAGETYPE)
        assert exc_info.value.status == DSJE_BADSTAGE

    def test_stage_and_link_info(self):
        job = self._open('LoadCustomers')

        assert self.engine.get_stage_info(job, 'ReadCustomers', StageInfo.STAGETYPE) == 'CSeqFileStage'
        assert self.engine.get_stage_info(job, 'Transform', StageInfo.STAGETYPE) == 'CTransformerStage'
        assert self.engine.get_stage_info(job, 'Transform', StageInfo.LINKLIST) == ['lnkOut', 'lnkReject']
        assert self.engine.get_link_info(job, 'Transform', 'lnkOut', LinkInfo.LINKNAME) == 'lnkOut'
        assert self.engine.get_link_info(job, 'Transform', 'lnkOut', LinkInfo.LINKROWCOUNT) == 0

    def test_log_event(self):
        """Added entries can be read back in full."""
        job = self._open('LoadCustomers')
        self.engine.log_event(job, LogType.INFO, 'Disk check\nall good')
        self.engine.log_event(job, LogType.WARNING, 'Disk almost full')

        events = list(self.engine.iter_log_entries(job))
        assert [(event.event_id, event.message) for event in events] == [
            (0, 'Disk check'),
            (1, 'Disk almost full'),
        ]
        assert self.engine.get_log_entry(job, 0).full_message == ['Disk check', 'all good']
        assert self.engine.get_newest_log_id(job) == 1
        assert self.engine.get_newest_log_id(job, LogType.INFO) == 0

        with pytest.raises(DSJobError) as exc_info:
            self.engine.log_event(job, LogType.FATAL, 'nope')
        assert exc_info.value.status == DSJE_BADTYPE

    def test_log_max_keeps_newest(self):
        job = self._run('WarnJob')
        events = list(self.engine.iter_log_entries(job, max_number=2))
        assert [event.event_id for event in events] == [3, 4]

    def test_log_walk_errors(self):
        """Walking an empty log ends with no more entries."""
        job = self._open('LoadCustomers')

        with pytest.raises(DSJobError) as exc_info:
            self.engine.find_first_log_entry(job)
        assert exc_info.value.status == DSJE_NOMORE
        assert list(self.engine.iter_log_entries(job)) == []

        with pytest.raises(DSJobError) as exc_info:
            self.engine.find_first_log_entry(job, max_number=-1)
        assert exc_info.value.status == DSJE_BADVALUE

        with pytest.raises(DSJobError) as exc_info:
            self.engine.get_log_entry(job, 5)
        assert exc_info.value.status == DSJE_BADVALUE

        with pytest.raises(DSJobError) as exc_info:
            self.engine.get_newest_log_id(job)
        assert exc_info.value.status == DSJE_NOMORE
