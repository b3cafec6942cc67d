from __future__ import annotations

import time
import uuid
from functools import lru_cache
from typing import Any, Callable, Dict, List, Optional, Tuple

import orjson
from pydantic import ValidationError
from sqlalchemy import (
    BigInteger,
    Column,
    Integer,
    String,
    Text,
    UniqueConstraint,
    create_engine,
    select,
)
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from .errors import NotFound, ParseFault, StorageFault
from .jobs import apply_update
from .schemas import AuditEvent, ExploreRequest, Job, JobFilter, JobMetadata, JobPage
from .settings import settings

Base = declarative_base()


def _now_ms() -> int:
    return int(time.time() * 1000)


class JobRow(Base):
    __tablename__ = "jobs"
    id = Column(String, primary_key=True)
    body = Column(Text, nullable=False)


class JobMetaRow(Base):
    __tablename__ = "job_meta"
    job_id = Column(String, primary_key=True)
    created_at = Column(BigInteger, nullable=False)
    status = Column(String, nullable=False)
    mode = Column(String, nullable=False)


class StepResultRow(Base):
    __tablename__ = "step_results"
    __table_args__ = (UniqueConstraint("job_id", "step"),)
    id = Column(Integer, primary_key=True, autoincrement=True)
    job_id = Column(String, nullable=False)
    step = Column(String, nullable=False)
    result_json = Column(Text, nullable=False)
    created_at = Column(BigInteger, nullable=False)


class Audit(Base):
    __tablename__ = "audit"
    id = Column(Integer, primary_key=True, autoincrement=True)
    run_id = Column(String, nullable=False)
    step = Column(String, nullable=False)
    status = Column(String, nullable=False)
    ts_iso = Column(String, nullable=False)
    ts_ns = Column(Integer, nullable=False)
    input_digest = Column(String, nullable=True)
    output_digest = Column(String, nullable=True)
    prev_event_hash = Column(String, nullable=False)
    event_hash = Column(String, nullable=False)
    details_json = Column(Text, nullable=False)


def make_engine(url: str) -> Engine:
    """Create an engine and the tables if they do not exist."""
    engine = create_engine(url, echo=False, future=True)
    Base.metadata.create_all(engine)
    return engine


@lru_cache(maxsize=None)
def default_engine() -> Engine:
    return make_engine(settings.database_url)


def _projection(job: Job) -> JobMetaRow:
    return JobMetaRow(job_id=job.id, created_at=job.created_at, status=job.status, mode=job.mode)


class JobStore:
    """Durable job records plus a metadata projection for cheap listing."""

    def __init__(self, engine: Optional[Engine] = None, clock: Callable[[], int] = _now_ms) -> None:
        self.engine = engine or default_engine()
        self._sessions = sessionmaker(bind=self.engine, autoflush=False, autocommit=False, future=True)
        self._clock = clock

    def create(self, request: ExploreRequest) -> Job:
        job = Job(
            id=uuid.uuid4().hex[:8],
            idea=request.idea,
            mode=request.mode,
            model=request.model,
            status="pending",
            context=request.context,
            continuation=request.continuation,
            webhook_url=request.webhook_url,
            callback_secret=request.callback_secret,
            created_at=self._clock(),
        )
        try:
            with self._sessions() as session:
                session.add(JobRow(id=job.id, body=job.model_dump_json()))
                session.add(_projection(job))
                session.commit()
        except SQLAlchemyError as e:
            raise StorageFault("create", key=job.id, cause=e) from e
        return job

    def get(self, job_id: str) -> Optional[Job]:
        try:
            with self._sessions() as session:
                return self._read_body(session, job_id)
        except SQLAlchemyError as e:
            raise StorageFault("get", key=job_id, cause=e) from e

    def update(self, job_id: str, partial: Dict[str, Any], known: Optional[Job] = None) -> Job:
        try:
            with self._sessions() as session:
                current = known if known is not None else self._read_body(session, job_id)
                if current is None:
                    raise NotFound(job_id)
                updated = apply_update(current, partial)
                session.merge(JobRow(id=job_id, body=updated.model_dump_json()))
                session.merge(_projection(updated))
                session.commit()
                return updated
        except SQLAlchemyError as e:
            raise StorageFault("update", key=job_id, cause=e) from e

    def list(self, job_filter: Optional[JobFilter] = None, limit: int = 20, offset: int = 0) -> JobPage:
        job_filter = job_filter or JobFilter()
        try:
            with self._sessions() as session:
                rows = session.execute(
                    select(JobRow.id, JobMetaRow.created_at, JobMetaRow.status, JobMetaRow.mode)
                    .select_from(JobRow)
                    .outerjoin(JobMetaRow, JobMetaRow.job_id == JobRow.id)
                ).all()

                summaries: List[Tuple[JobMetadata, str, Optional[Job]]] = []
                for job_id, created_at, status, mode in rows:
                    if created_at is None:
                        # Legacy record without a projection: derive it from the body
                        try:
                            legacy = self._read_body(session, job_id)
                        except ParseFault:
                            continue
                        if legacy is None:
                            continue
                        meta = JobMetadata(created_at=legacy.created_at, status=legacy.status, mode=legacy.mode)
                        summaries.append((meta, job_id, legacy))
                    else:
                        meta = JobMetadata(created_at=created_at, status=status, mode=mode)
                        summaries.append((meta, job_id, None))

                matching = [
                    s for s in summaries
                    if (job_filter.status is None or s[0].status == job_filter.status)
                    and (job_filter.mode is None or s[0].mode == job_filter.mode)
                ]
                matching.sort(key=lambda s: (s[0].created_at, s[1]), reverse=True)
                page = matching[offset: offset + limit]

                jobs: List[Job] = []
                for _meta, job_id, loaded in page:
                    job = loaded if loaded is not None else self._read_body(session, job_id)
                    if job is not None:
                        jobs.append(job)
                return JobPage(jobs=jobs, total=len(matching))
        except SQLAlchemyError as e:
            raise StorageFault("list", cause=e) from e

    def _read_body(self, session: Session, job_id: str) -> Optional[Job]:
        row = session.get(JobRow, job_id)
        if row is None:
            return None
        try:
            return Job.model_validate(orjson.loads(row.body))
        except (orjson.JSONDecodeError, ValidationError) as e:
            raise ParseFault(f"job {job_id}", cause=e) from e


class StepResultStore:
    """Persisted results of completed pipeline steps, keyed by (job, step)."""

    def __init__(self, engine: Optional[Engine] = None) -> None:
        self.engine = engine or default_engine()
        self._sessions = sessionmaker(bind=self.engine, autoflush=False, autocommit=False, future=True)

    def lookup(self, job_id: str, step: str) -> Tuple[bool, Any]:
        try:
            with self._sessions() as session:
                row = session.execute(
                    select(StepResultRow).where(StepResultRow.job_id == job_id, StepResultRow.step == step)
                ).scalars().first()
                if row is None:
                    return False, None
                return True, orjson.loads(row.result_json)
        except SQLAlchemyError as e:
            raise StorageFault("step lookup", key=f"{job_id}/{step}", cause=e) from e

    def save(self, job_id: str, step: str, result: Any) -> None:
        try:
            with self._sessions() as session:
                session.add(
                    StepResultRow(
                        job_id=job_id,
                        step=step,
                        result_json=orjson.dumps(result).decode(),
                        created_at=_now_ms(),
                    )
                )
                session.commit()
        except SQLAlchemyError as e:
            raise StorageFault("step save", key=f"{job_id}/{step}", cause=e) from e


class AuditStore:
    def __init__(self, engine: Optional[Engine] = None) -> None:
        self.engine = engine or default_engine()
        self._sessions = sessionmaker(bind=self.engine, autoflush=False, autocommit=False, future=True)

    def append(self, event: AuditEvent) -> None:
        with self._sessions() as session:
            session.add(
                Audit(
                    run_id=event.run_id,
                    step=event.step,
                    status=event.status,
                    ts_iso=event.ts_iso,
                    ts_ns=event.ts_ns,
                    input_digest=event.input_digest,
                    output_digest=event.output_digest,
                    prev_event_hash=event.prev_event_hash,
                    event_hash=event.event_hash,
                    details_json=orjson.dumps(event.details, option=orjson.OPT_SORT_KEYS).decode(),
                )
            )
            session.commit()

    def last_hash(self, run_id: str) -> Optional[str]:
        with self._sessions() as session:
            stmt = select(Audit).where(Audit.run_id == run_id).order_by(Audit.id.desc()).limit(1)
            row = session.execute(stmt).scalars().first()
            return row.event_hash if row else None

    def events_for(self, run_id: str) -> List[Dict[str, Any]]:
        with self._sessions() as session:
            stmt = select(Audit).where(Audit.run_id == run_id).order_by(Audit.id.asc())
            rows = session.execute(stmt).scalars().all()
            return [
                {
                    "step": r.step,
                    "status": r.status,
                    "ts_iso": r.ts_iso,
                    "event_hash": r.event_hash,
                    "details": orjson.loads(r.details_json),
                }
                for r in rows
            ]
