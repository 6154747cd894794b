"""
CLI commands package.
"""

from .catalog import import_catalog_command
from .info import jobinfo_command, linkinfo_command, paraminfo_command, stageinfo_command
from .listing import (
    ljobs_command,
    llinks_command,
    lparams_command,
    lprojects_command,
    lstages_command,
)
from .log import log_command, logdetail_command, lognewest_command, logsum_command
from .run import run_command, stop_command

__all__ = [
    "import_catalog_command",
    "jobinfo_command",
    "linkinfo_command",
    "ljobs_command",
    "llinks_command",
    "log_command",
    "logdetail_command",
    "lognewest_command",
    "logsum_command",
    "lparams_command",
    "lprojects_command",
    "lstages_command",
    "paraminfo_command",
    "run_command",
    "stageinfo_command",
    "stop_command",
]
