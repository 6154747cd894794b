"""
SQLite storage for the local job engine: catalog, run state, locks and log.
"""

import json
import os
import sqlite3
import time
from contextlib import contextmanager
from typing import Any, Iterator

import appdirs

from .constants import JobStatus, LogType


class DatabaseManager:
    """Manages the SQLite database behind the local engine."""

    def __init__(self, db_path: str | None = None):
        if db_path is None:
            app_dir = appdirs.user_data_dir("dsjob", "dsjob")
            os.makedirs(app_dir, exist_ok=True)
            db_path = os.path.join(app_dir, "engine.db")

        self.db_path = db_path
        self.conn = sqlite3.connect(db_path, check_same_thread=False)
        self.conn.row_factory = sqlite3.Row
        self._in_transaction = False
        self.conn.execute("PRAGMA foreign_keys = ON")
        self._create_tables()

    def _create_tables(self) -> None:
        """Create the catalog, run state and log tables."""
        cursor = self.conn.cursor()

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS projects (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                name TEXT UNIQUE NOT NULL,
                host TEXT
            )
        """)

        # One row per job; the run columns describe the current or last run
        cursor.execute(f"""
            CREATE TABLE IF NOT EXISTS jobs (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                project_id INTEGER NOT NULL,
                name TEXT NOT NULL,
                compiled BOOLEAN DEFAULT 1,
                duration REAL DEFAULT 0,
                outcome TEXT DEFAULT 'ok',
                warnings INTEGER DEFAULT 0,
                controller TEXT,
                user_status TEXT,
                status INTEGER DEFAULT {int(JobStatus.NOTRUNNING)},
                wave_number INTEGER DEFAULT 0,
                run_mode INTEGER,
                start_time REAL,
                warn_limit INTEGER,
                row_limit INTEGER,
                locked_by INTEGER,
                FOREIGN KEY (project_id) REFERENCES projects (id) ON DELETE CASCADE,
                UNIQUE(project_id, name)
            )
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS stages (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                job_id INTEGER NOT NULL,
                name TEXT NOT NULL,
                type_name TEXT,
                in_row_num INTEGER DEFAULT 0,
                last_error_id INTEGER,
                FOREIGN KEY (job_id) REFERENCES jobs (id) ON DELETE CASCADE,
                UNIQUE(job_id, name)
            )
        """)

        # design_rows is how many rows a link carries in a full run
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS links (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                stage_id INTEGER NOT NULL,
                name TEXT NOT NULL,
                design_rows INTEGER DEFAULT 0,
                row_count INTEGER DEFAULT 0,
                last_error_id INTEGER,
                FOREIGN KEY (stage_id) REFERENCES stages (id) ON DELETE CASCADE,
                UNIQUE(stage_id, name)
            )
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS params (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                job_id INTEGER NOT NULL,
                name TEXT NOT NULL,
                param_type INTEGER NOT NULL,
                help_text TEXT,
                prompt TEXT,
                prompt_at_run BOOLEAN DEFAULT 0,
                default_value TEXT,
                design_default TEXT,
                list_values TEXT,
                design_list_values TEXT,
                FOREIGN KEY (job_id) REFERENCES jobs (id) ON DELETE CASCADE,
                UNIQUE(job_id, name)
            )
        """)

        # event_id is numbered per job, starting at 0
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS log_entries (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                job_id INTEGER NOT NULL,
                event_id INTEGER NOT NULL,
                timestamp REAL NOT NULL,
                type INTEGER NOT NULL,
                message TEXT,
                FOREIGN KEY (job_id) REFERENCES jobs (id) ON DELETE CASCADE,
                UNIQUE(job_id, event_id)
            )
        """)

        cursor.execute("CREATE INDEX IF NOT EXISTS idx_jobs_project ON jobs (project_id)")
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_stages_job ON stages (job_id)")
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_links_stage ON links (stage_id)")
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_params_job ON params (job_id)")
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_log_job ON log_entries (job_id, event_id)")

        self.conn.commit()

    @contextmanager
    def transaction(self) -> Iterator[None]:
        """Group writes so they are committed together, or rolled back on error."""
        if self._in_transaction:
            yield
            return

        self._in_transaction = True
        try:
            yield
        except BaseException:
            self.conn.rollback()
            raise
        else:
            self.conn.commit()
        finally:
            self._in_transaction = False

    def _commit(self) -> None:
        if not self._in_transaction:
            self.conn.commit()

    # Projects

    def insert_project(self, name: str, host: str | None = None) -> int:
        """Insert a project, or update its host if it already exists."""
        cursor = self.conn.cursor()

        cursor.execute(
            """
            INSERT INTO projects (name, host) VALUES (?, ?)
            ON CONFLICT(name) DO UPDATE SET host = excluded.host
        """,
            (name, host),
        )
        self._commit()

        cursor.execute("SELECT id FROM projects WHERE name = ?", (name,))
        return cursor.fetchone()["id"]

    def get_project(self, name: str) -> sqlite3.Row | None:
        cursor = self.conn.cursor()
        cursor.execute("SELECT * FROM projects WHERE name = ?", (name,))
        return cursor.fetchone()

    def list_projects(self) -> list[str]:
        cursor = self.conn.cursor()
        cursor.execute("SELECT name FROM projects ORDER BY name")
        return [row["name"] for row in cursor.fetchall()]

    # Jobs

    def upsert_job(self, project_id: int, job_info: dict[str, Any]) -> int:
        """Insert a job definition or replace the definition of an existing one.

        Run state (status, wave number, log) of an existing job is kept.
        """
        cursor = self.conn.cursor()

        compiled = job_info.get("compiled", True)
        cursor.execute(
            """
            INSERT INTO jobs
            (project_id, name, compiled, duration, outcome, warnings, controller, user_status, status)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(project_id, name) DO UPDATE SET
                compiled = excluded.compiled,
                duration = excluded.duration,
                outcome = excluded.outcome,
                warnings = excluded.warnings,
                controller = excluded.controller,
                user_status = excluded.user_status,
                status = CASE
                    WHEN excluded.compiled = 0 THEN excluded.status
                    WHEN jobs.status = {nr} THEN {nn}
                    ELSE jobs.status
                END
        """.format(nr=int(JobStatus.NOTRUNNABLE), nn=int(JobStatus.NOTRUNNING)),
            (
                project_id,
                job_info["name"],
                compiled,
                job_info.get("duration", 0),
                job_info.get("outcome", "ok"),
                job_info.get("warnings", 0),
                job_info.get("controller"),
                job_info.get("user_status"),
                int(JobStatus.NOTRUNNING if compiled else JobStatus.NOTRUNNABLE),
            ),
        )
        self._commit()

        cursor.execute(
            "SELECT id FROM jobs WHERE project_id = ? AND name = ?",
            (project_id, job_info["name"]),
        )
        return cursor.fetchone()["id"]

    def get_job(self, project_id: int, name: str) -> sqlite3.Row | None:
        cursor = self.conn.cursor()
        cursor.execute(
            "SELECT * FROM jobs WHERE project_id = ? AND name = ?",
            (project_id, name),
        )
        return cursor.fetchone()

    def get_job_by_id(self, job_id: int) -> sqlite3.Row | None:
        cursor = self.conn.cursor()
        cursor.execute("SELECT * FROM jobs WHERE id = ?", (job_id,))
        return cursor.fetchone()

    def list_jobs(self, project_id: int) -> list[str]:
        cursor = self.conn.cursor()
        cursor.execute("SELECT name FROM jobs WHERE project_id = ? ORDER BY name", (project_id,))
        return [row["name"] for row in cursor.fetchall()]

    def update_job(self, job_id: int, **fields: Any) -> None:
        """Update run-state columns of a job."""
        if not fields:
            return

        columns = ", ".join(f"{column} = ?" for column in fields)
        cursor = self.conn.cursor()
        cursor.execute(
            f"UPDATE jobs SET {columns} WHERE id = ?",
            (*fields.values(), job_id),
        )
        self._commit()

    def finish_run(self, job_id: int, status: int) -> bool:
        """Move a running job to its final status.

        Returns False when the job is no longer running, i.e. another
        connection already finished the run.
        """
        cursor = self.conn.cursor()
        cursor.execute(
            "UPDATE jobs SET status = ? WHERE id = ? AND status = ?",
            (int(status), job_id, int(JobStatus.RUNNING)),
        )
        self._commit()
        return cursor.rowcount == 1

    def clear_job_definition(self, job_id: int) -> None:
        """Remove the stages, links and parameters of a job."""
        cursor = self.conn.cursor()
        cursor.execute(
            "DELETE FROM links WHERE stage_id IN (SELECT id FROM stages WHERE job_id = ?)",
            (job_id,),
        )
        cursor.execute("DELETE FROM stages WHERE job_id = ?", (job_id,))
        cursor.execute("DELETE FROM params WHERE job_id = ?", (job_id,))
        self._commit()

    # Locks

    def acquire_lock(self, job_id: int, owner: int) -> int | None:
        """Take the job lock for owner; returns the current holder if someone else has it."""
        cursor = self.conn.cursor()

        cursor.execute(
            """
            UPDATE jobs SET locked_by = ?
            WHERE id = ? AND (locked_by IS NULL OR locked_by = ?)
        """,
            (owner, job_id, owner),
        )
        self._commit()

        if cursor.rowcount:
            return None

        cursor.execute("SELECT locked_by FROM jobs WHERE id = ?", (job_id,))
        return cursor.fetchone()["locked_by"]

    def release_lock(self, job_id: int, owner: int | None = None) -> None:
        """Release the job lock. Without an owner the lock is broken unconditionally."""
        cursor = self.conn.cursor()
        if owner is None:
            cursor.execute("UPDATE jobs SET locked_by = NULL WHERE id = ?", (job_id,))
        else:
            cursor.execute(
                "UPDATE jobs SET locked_by = NULL WHERE id = ? AND locked_by = ?",
                (job_id, owner),
            )
        self._commit()

    # Stages and links

    def insert_stage(self, job_id: int, stage_info: dict[str, Any]) -> int:
        cursor = self.conn.cursor()
        cursor.execute(
            """
            INSERT INTO stages (job_id, name, type_name)
            VALUES (?, ?, ?)
        """,
            (job_id, stage_info["name"], stage_info.get("type_name")),
        )
        stage_id = cursor.lastrowid
        self._commit()
        return stage_id

    def get_stage(self, job_id: int, name: str) -> sqlite3.Row | None:
        cursor = self.conn.cursor()
        cursor.execute("SELECT * FROM stages WHERE job_id = ? AND name = ?", (job_id, name))
        return cursor.fetchone()

    def list_stages(self, job_id: int) -> list[sqlite3.Row]:
        cursor = self.conn.cursor()
        cursor.execute("SELECT * FROM stages WHERE job_id = ? ORDER BY id", (job_id,))
        return cursor.fetchall()

    def update_stage(self, stage_id: int, **fields: Any) -> None:
        if not fields:
            return

        columns = ", ".join(f"{column} = ?" for column in fields)
        cursor = self.conn.cursor()
        cursor.execute(f"UPDATE stages SET {columns} WHERE id = ?", (*fields.values(), stage_id))
        self._commit()

    def insert_link(self, stage_id: int, link_info: dict[str, Any]) -> int:
        cursor = self.conn.cursor()
        cursor.execute(
            """
            INSERT INTO links (stage_id, name, design_rows)
            VALUES (?, ?, ?)
        """,
            (stage_id, link_info["name"], link_info.get("design_rows", 0)),
        )
        link_id = cursor.lastrowid
        self._commit()
        return link_id

    def get_link(self, stage_id: int, name: str) -> sqlite3.Row | None:
        cursor = self.conn.cursor()
        cursor.execute("SELECT * FROM links WHERE stage_id = ? AND name = ?", (stage_id, name))
        return cursor.fetchone()

    def list_links(self, stage_id: int) -> list[sqlite3.Row]:
        cursor = self.conn.cursor()
        cursor.execute("SELECT * FROM links WHERE stage_id = ? ORDER BY id", (stage_id,))
        return cursor.fetchall()

    def update_link(self, link_id: int, **fields: Any) -> None:
        if not fields:
            return

        columns = ", ".join(f"{column} = ?" for column in fields)
        cursor = self.conn.cursor()
        cursor.execute(f"UPDATE links SET {columns} WHERE id = ?", (*fields.values(), link_id))
        self._commit()

    # Parameters

    def insert_param(self, job_id: int, param_info: dict[str, Any]) -> int:
        cursor = self.conn.cursor()
        cursor.execute(
            """
            INSERT INTO params
            (job_id, name, param_type, help_text, prompt, prompt_at_run,
             default_value, design_default, list_values, design_list_values)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """,
            (
                job_id,
                param_info["name"],
                int(param_info["param_type"]),
                param_info.get("help_text", ""),
                param_info.get("prompt", ""),
                param_info.get("prompt_at_run", False),
                param_info.get("default_value"),
                param_info.get("design_default"),
                json.dumps(param_info.get("list_values", [])),
                json.dumps(param_info.get("design_list_values", [])),
            ),
        )
        param_id = cursor.lastrowid
        self._commit()
        return param_id

    def get_param(self, job_id: int, name: str) -> dict[str, Any] | None:
        cursor = self.conn.cursor()
        cursor.execute("SELECT * FROM params WHERE job_id = ? AND name = ?", (job_id, name))
        row = cursor.fetchone()
        if row is None:
            return None

        param = dict(row)
        param["list_values"] = json.loads(row["list_values"] or "[]")
        param["design_list_values"] = json.loads(row["design_list_values"] or "[]")
        return param

    def list_params(self, job_id: int) -> list[str]:
        cursor = self.conn.cursor()
        cursor.execute("SELECT name FROM params WHERE job_id = ? ORDER BY id", (job_id,))
        return [row["name"] for row in cursor.fetchall()]

    # Log

    def add_log_entry(
        self,
        job_id: int,
        event_type: int,
        message: str,
        timestamp: float | None = None,
    ) -> int:
        """Append an entry to the job log and return its event id."""
        cursor = self.conn.cursor()

        cursor.execute(
            "SELECT COALESCE(MAX(event_id), -1) + 1 AS next_id FROM log_entries WHERE job_id = ?",
            (job_id,),
        )
        event_id = cursor.fetchone()["next_id"]

        cursor.execute(
            """
            INSERT INTO log_entries (job_id, event_id, timestamp, type, message)
            VALUES (?, ?, ?, ?, ?)
        """,
            (job_id, event_id, timestamp if timestamp is not None else time.time(), int(event_type), message),
        )

        self._commit()
        return event_id

    def get_log_entries(
        self,
        job_id: int,
        event_type: int = LogType.ANY,
        start_time: float = 0,
        end_time: float = 0,
        limit: int = 0,
    ) -> list[sqlite3.Row]:
        """Matching log entries, oldest first. A limit keeps the newest entries."""
        query = "SELECT * FROM log_entries WHERE job_id = ?"
        args: list[Any] = [job_id]

        if event_type != LogType.ANY:
            query += " AND type = ?"
            args.append(int(event_type))
        if start_time:
            query += " AND timestamp >= ?"
            args.append(start_time)
        if end_time:
            query += " AND timestamp <= ?"
            args.append(end_time)

        query += " ORDER BY event_id DESC"
        if limit > 0:
            query += " LIMIT ?"
            args.append(limit)

        cursor = self.conn.cursor()
        cursor.execute(query, args)
        return list(reversed(cursor.fetchall()))

    def get_log_entry(self, job_id: int, event_id: int) -> sqlite3.Row | None:
        cursor = self.conn.cursor()
        cursor.execute(
            "SELECT * FROM log_entries WHERE job_id = ? AND event_id = ?",
            (job_id, event_id),
        )
        return cursor.fetchone()

    def get_newest_log_id(self, job_id: int, event_type: int = LogType.ANY) -> int | None:
        cursor = self.conn.cursor()
        if event_type == LogType.ANY:
            cursor.execute(
                "SELECT MAX(event_id) AS newest FROM log_entries WHERE job_id = ?",
                (job_id,),
            )
        else:
            cursor.execute(
                "SELECT MAX(event_id) AS newest FROM log_entries WHERE job_id = ? AND type = ?",
                (job_id, int(event_type)),
            )
        return cursor.fetchone()["newest"]

    def get_stats(self) -> dict[str, int]:
        """Get database statistics."""
        cursor = self.conn.cursor()

        stats = {}
        for table in ("projects", "jobs", "stages", "links", "params", "log_entries"):
            cursor.execute(f"SELECT COUNT(*) AS total FROM {table}")
            stats[table] = cursor.fetchone()["total"]

        return stats

    def close(self) -> None:
        """Close database connection."""
        if self.conn:
            self.conn.close()
            self.conn = None
