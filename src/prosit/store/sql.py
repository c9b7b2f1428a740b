from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import List, Optional

import sqlalchemy as sa
from sqlalchemy.orm import DeclarativeBase, Mapped, Session, mapped_column, sessionmaker
from sqlalchemy.pool import StaticPool

from ..errors import NotFound
from ..model import Job, Project, Run, utcnow
from .base import Store

logger = logging.getLogger(__name__)


class Base(DeclarativeBase):
    pass


class ProjectRow(Base):
    __tablename__ = "projects"
    __table_args__ = {"sqlite_autoincrement": True}
    id: Mapped[int] = mapped_column(sa.Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(sa.Text, nullable=False, default="")
    pipeline: Mapped[list] = mapped_column(sa.JSON, nullable=False, default=list)
    one_off_jobs: Mapped[list] = mapped_column(sa.JSON, nullable=False, default=list)


class JobRow(Base):
    __tablename__ = "jobs"
    __table_args__ = {"sqlite_autoincrement": True}
    id: Mapped[int] = mapped_column(sa.Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(sa.Text, nullable=False, default="")
    cmd: Mapped[str] = mapped_column(sa.Text, nullable=False, default="")
    workspace: Mapped[str] = mapped_column(sa.Text, nullable=False, default="")


class RunRow(Base):
    __tablename__ = "runs"
    job_id: Mapped[int] = mapped_column(sa.Integer, sa.ForeignKey("jobs.id", ondelete="CASCADE"), primary_key=True)
    seq: Mapped[int] = mapped_column(sa.Integer, primary_key=True, autoincrement=False)
    started_at: Mapped[Optional[datetime]] = mapped_column(sa.DateTime(timezone=True), nullable=True)
    ended_at: Mapped[Optional[datetime]] = mapped_column(sa.DateTime(timezone=True), nullable=True)
    cmd: Mapped[str] = mapped_column(sa.Text, nullable=False, default="")
    output: Mapped[str] = mapped_column(sa.Text, nullable=False, default="")
    success: Mapped[bool] = mapped_column(sa.Boolean, nullable=False, default=False)
    canceled: Mapped[bool] = mapped_column(sa.Boolean, nullable=False, default=False)


def _aware(ts: Optional[datetime]) -> Optional[datetime]:
    # SQLite drops tzinfo on the way back out; values are always written in UTC.
    if ts is not None and ts.tzinfo is None:
        return ts.replace(tzinfo=timezone.utc)
    return ts


def _to_project(row: ProjectRow) -> Project:
    return Project(
        id=row.id,
        name=row.name,
        pipeline=list(row.pipeline or []),
        one_off_jobs=set(row.one_off_jobs or []),
    )


def _to_job(row: JobRow) -> Job:
    return Job(id=row.id, name=row.name, cmd=row.cmd, workspace=row.workspace)


def _to_run(row: RunRow) -> Run:
    return Run(
        id=row.seq,
        start=_aware(row.started_at),
        end=_aware(row.ended_at),
        cmd=row.cmd,
        output=row.output,
        success=row.success,
        canceled=row.canceled,
    )


def create_store_engine(url: str) -> sa.Engine:
    """Create an engine that can be shared by the runner's worker threads."""
    if url.startswith("sqlite"):
        kwargs: dict = {"connect_args": {"check_same_thread": False}}
        if url in ("sqlite://", "sqlite:///:memory:"):
            # one shared connection, otherwise every thread sees its own empty database
            kwargs["poolclass"] = StaticPool
        return sa.create_engine(url, **kwargs)
    return sa.create_engine(url, pool_pre_ping=True)


class SQLStore(Store):
    """Durable store backed by any database SQLAlchemy can talk to."""

    def __init__(self, url: str = "sqlite:///prosit.db", *, engine: sa.Engine | None = None) -> None:
        self.engine = engine or create_store_engine(url)
        self.SessionLocal = sessionmaker(self.engine, class_=Session, expire_on_commit=False)
        Base.metadata.create_all(self.engine)
        logger.debug("store ready: %s", self.engine.url)

    def close(self) -> None:
        self.engine.dispose()

    # ------------------------------------------------------------------
    # Projects
    # ------------------------------------------------------------------

    def get_projects(self) -> List[Project]:
        with self.SessionLocal() as s:
            rows = s.scalars(sa.select(ProjectRow).order_by(ProjectRow.id)).all()
            return [_to_project(r) for r in rows]

    def get_project(self, project_id: int) -> Project:
        with self.SessionLocal() as s:
            row = s.get(ProjectRow, project_id)
            if row is None:
                raise NotFound("project not found", {"project": project_id})
            return _to_project(row)

    def new_project(self, project: Project) -> Project:
        with self.SessionLocal() as s:
            with s.begin():
                row = ProjectRow(
                    name=project.name,
                    pipeline=list(project.pipeline),
                    one_off_jobs=sorted(project.one_off_jobs),
                )
                s.add(row)
                s.flush()
                return _to_project(row)

    def update_project(self, project: Project) -> None:
        with self.SessionLocal() as s:
            with s.begin():
                row = s.get(ProjectRow, project.id)
                if row is None:
                    raise NotFound("project not found", {"project": project.id})
                row.name = project.name
                row.pipeline = list(project.pipeline)
                row.one_off_jobs = sorted(project.one_off_jobs)

    def delete_project(self, project_id: int) -> None:
        with self.SessionLocal() as s:
            with s.begin():
                row = s.get(ProjectRow, project_id)
                if row is None:
                    raise NotFound("project not found", {"project": project_id})
                s.delete(row)

    # ------------------------------------------------------------------
    # Jobs
    # ------------------------------------------------------------------

    def get_jobs(self) -> List[Job]:
        with self.SessionLocal() as s:
            rows = s.scalars(sa.select(JobRow).order_by(JobRow.id)).all()
            return [_to_job(r) for r in rows]

    def get_job(self, job_id: int) -> Job:
        with self.SessionLocal() as s:
            row = s.get(JobRow, job_id)
            if row is None:
                raise NotFound("job not found", {"job": job_id})
            return _to_job(row)

    def new_job(self, job: Job) -> Job:
        with self.SessionLocal() as s:
            with s.begin():
                row = JobRow(name=job.name, cmd=job.cmd, workspace=job.workspace or "")
                s.add(row)
                s.flush()
                return _to_job(row)

    def update_job(self, job: Job) -> None:
        with self.SessionLocal() as s:
            with s.begin():
                row = s.get(JobRow, job.id)
                if row is None:
                    raise NotFound("job not found", {"job": job.id})
                row.name = job.name
                row.cmd = job.cmd
                row.workspace = job.workspace or ""

    def delete_job(self, job_id: int) -> None:
        with self.SessionLocal() as s:
            with s.begin():
                row = s.get(JobRow, job_id)
                if row is None:
                    raise NotFound("job not found", {"job": job_id})
                # SQLite ignores ON DELETE CASCADE unless foreign keys are enabled
                s.execute(sa.delete(RunRow).where(RunRow.job_id == job_id))
                s.delete(row)

    # ------------------------------------------------------------------
    # Runs
    # ------------------------------------------------------------------

    @staticmethod
    def _require_job(s: Session, job_id: int) -> None:
        if s.get(JobRow, job_id) is None:
            raise NotFound("job not found", {"job": job_id})

    def get_run_for_job(self, job_id: int, run_id: int) -> Run:
        with self.SessionLocal() as s:
            self._require_job(s, job_id)
            row = s.get(RunRow, (job_id, run_id))
            if row is None:
                raise NotFound("run not found", {"job": job_id, "run": run_id})
            return _to_run(row)

    def get_n_runs_for_job(self, job_id: int, n: int) -> List[Run]:
        with self.SessionLocal() as s:
            self._require_job(s, job_id)
            if n <= 0:
                return []
            q = (
                sa.select(RunRow)
                .where(RunRow.job_id == job_id)
                .order_by(RunRow.seq.desc())
                .limit(n)
            )
            return [_to_run(r) for r in s.scalars(q).all()]

    def new_run_for_job(self, job_id: int) -> Run:
        with self.SessionLocal() as s:
            with s.begin():
                self._require_job(s, job_id)
                q = sa.select(sa.func.coalesce(sa.func.max(RunRow.seq), 0)).where(RunRow.job_id == job_id)
                seq = s.execute(q).scalar_one() + 1
                row = RunRow(job_id=job_id, seq=seq, started_at=utcnow())
                s.add(row)
                s.flush()
                return _to_run(row)

    def update_run_for_job(self, job_id: int, run: Run) -> None:
        with self.SessionLocal() as s:
            with s.begin():
                self._require_job(s, job_id)
                row = s.get(RunRow, (job_id, run.id))
                if row is None:
                    raise NotFound("run not found", {"job": job_id, "run": run.id})
                row.started_at = run.start
                row.ended_at = run.end
                row.cmd = run.cmd
                row.output = run.output
                row.success = run.success
                row.canceled = run.canceled
