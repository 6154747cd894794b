"""
dsjob - command-line client for DataStage-style job engines.

Runs, stops and inspects jobs through the engine's client API:
- Start jobs with typed parameters, warning and row limits, and wait for them
- List projects, jobs, stages, links and parameters
- Show job, stage, link and parameter details
- Add to, summarise and read the job log
- Offline SQLite engine for demos and tests
"""

__version__ = "0.1.0"

from .core.engine import Engine, EngineConfig, get_engine
from .core.errors import DSJobError

__all__ = ["DSJobError", "Engine", "EngineConfig", "get_engine"]
