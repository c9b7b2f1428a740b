from .engine import execute_job
from .errors import (
    CaptureSetupFailed,
    NotFound,
    PersistFailed,
    ProsiError,
    RunAllocationFailed,
    WorkspaceError,
)
from .model import Job, Project, Run
from .pipeline import run_pipeline
from .scheduler import Runner
from .store import MemoryStore, SQLStore, Store

__all__ = [
    "Runner", "execute_job", "run_pipeline",
    "Job", "Project", "Run",
    "Store", "MemoryStore", "SQLStore",
    "ProsiError", "NotFound", "RunAllocationFailed", "PersistFailed", "WorkspaceError", "CaptureSetupFailed",
]
