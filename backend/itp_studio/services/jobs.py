from __future__ import annotations

from typing import Any, Dict, List, Optional, Sequence

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, col, func, select

from itp_studio.core.errors import JobStateError
from itp_studio.models.entities import ALLOWED_TRANSITIONS, AssetKind, Job, JobStatus, JobType, ProductAsset, utcnow
from itp_studio.schemas.contracts import JobInput, JobOutput


def create_job(session: Session, product_id: int, job_type: JobType, job_input: JobInput) -> Job:
    previous = session.exec(
        select(func.count()).select_from(Job).where(Job.product_id == product_id, Job.type == job_type)
    ).one()
    job = Job(
        product_id=product_id,
        type=job_type,
        status=JobStatus.QUEUED,
        attempt=previous + 1,
        input=job_input.model_dump(mode="json"),
    )
    session.add(job)
    session.commit()
    session.refresh(job)
    return job


def claim_job(session: Session, job: Job) -> bool:
    """Move a queued job to running; False when another worker got there first."""
    now = utcnow()
    result = session.exec(
        update(Job)
        .where(col(Job.id) == job.id, col(Job.status) == JobStatus.QUEUED)
        .values(status=JobStatus.RUNNING, started_at=now, updated_at=now)
    )
    session.commit()
    if result.rowcount != 1:
        return False
    session.refresh(job)
    return True


def save_output(session: Session, job: Job, output: JobOutput, error: Optional[str] = None) -> Job:
    job.output = output.model_dump(mode="json")
    pending = output.pending()
    job.prediction_id = pending[0].prediction_id if pending else job.prediction_id
    if error is not None:
        job.error = error
    job.updated_at = utcnow()
    session.add(job)
    session.commit()
    session.refresh(job)
    return job


def finish_job(session: Session, job: Job, status: JobStatus, error: Optional[str] = None) -> bool:
    """Move a running job to a terminal status; False when another writer finished it first."""
    current = JobStatus(job.status)
    if status not in ALLOWED_TRANSITIONS[current]:
        raise JobStateError(f"job {job.id}: illegal transition {current.value} -> {status.value}")
    now = utcnow()
    values = {"status": status, "updated_at": now, "finished_at": now}
    if error is not None:
        values["error"] = error
    result = session.exec(
        update(Job).where(col(Job.id) == job.id, col(Job.status) == current).values(**values)
    )
    session.commit()
    session.refresh(job)
    return result.rowcount == 1


def fail_job(session: Session, job: Job, error: str) -> bool:
    session.refresh(job)
    if job.status == JobStatus.QUEUED:
        job.transition_to(JobStatus.RUNNING)
    return finish_job(session, job, JobStatus.FAILED, error=error)


def list_queued(session: Session, limit: int = 10) -> Sequence[Job]:
    return session.exec(
        select(Job)
        .where(Job.status == JobStatus.QUEUED)
        .order_by(col(Job.created_at).asc(), col(Job.id).asc())
        .limit(limit)
    ).all()


def list_pending(session: Session) -> List[Job]:
    """Running jobs still waiting on at least one provider prediction."""
    running = session.exec(
        select(Job).where(Job.status == JobStatus.RUNNING).order_by(col(Job.created_at).asc(), col(Job.id).asc())
    ).all()
    return [job for job in running if JobOutput.model_validate(job.output or {}).pending()]


def find_job_by_prediction(session: Session, prediction_id: str) -> Optional[Job]:
    job = session.exec(select(Job).where(Job.prediction_id == prediction_id)).first()
    if job is not None:
        return job
    # multi-model jobs keep every prediction id in their output only
    for candidate in session.exec(select(Job).where(Job.status == JobStatus.RUNNING)).all():
        outputs = JobOutput.model_validate(candidate.output or {}).outputs
        if any(o.prediction_id == prediction_id for o in outputs):
            return candidate
    return None


def list_jobs(session: Session, product_id: int) -> Sequence[Job]:
    return session.exec(
        select(Job).where(Job.product_id == product_id).order_by(col(Job.created_at).desc(), col(Job.id).desc())
    ).all()


def latest_asset(session: Session, product_id: int, kinds: Sequence[AssetKind]) -> Optional[ProductAsset]:
    return session.exec(
        select(ProductAsset)
        .where(ProductAsset.product_id == product_id, col(ProductAsset.kind).in_(list(kinds)))
        .order_by(col(ProductAsset.created_at).desc(), col(ProductAsset.id).desc())
    ).first()


def output_key(job_id: int, prediction_id: Optional[str] = None, model_id: Optional[str] = None) -> str:
    return f"{job_id}:{prediction_id or model_id}"


def find_existing_asset(
    session: Session, job_id: int, *, prediction_id: Optional[str] = None, model_id: Optional[str] = None
) -> Optional[ProductAsset]:
    key = output_key(job_id, prediction_id, model_id)
    return session.exec(select(ProductAsset).where(ProductAsset.output_key == key)).first()


def create_asset(
    session: Session,
    *,
    product_id: int,
    job_id: int,
    kind: AssetKind,
    path: str,
    url: str,
    width: int,
    height: int,
    prediction_id: Optional[str] = None,
    model_id: Optional[str] = None,
    meta: Optional[Dict[str, Any]] = None,
) -> ProductAsset:
    """Insert the asset for one job output entry.

    When a concurrent writer already stored that entry, the unique output key
    rejects the insert and the existing row is returned instead; callers tell
    the two apart by comparing ``path``.
    """
    asset = ProductAsset(
        product_id=product_id,
        job_id=job_id,
        prediction_id=prediction_id,
        output_key=output_key(job_id, prediction_id, model_id),
        kind=kind,
        path=path,
        url=url,
        width=width,
        height=height,
        meta=meta or {},
    )
    session.add(asset)
    try:
        session.commit()
    except IntegrityError:
        session.rollback()
        existing = find_existing_asset(session, job_id, prediction_id=prediction_id, model_id=model_id)
        if existing is None:
            raise
        return existing
    session.refresh(asset)
    return asset


# prerequisite asset kinds per job type, in order of preference
SOURCE_KINDS = {
    JobType.BACKGROUND_REMOVAL: [[AssetKind.SOURCE]],
    JobType.MOCKUP: [[AssetKind.NOBG], [AssetKind.SOURCE]],
    JobType.UPSCALE: [[AssetKind.SOURCE, AssetKind.NOBG]],
}


def resolve_source_asset(
    session: Session, product_id: int, job_type: JobType, asset_id: Optional[int] = None
) -> Optional[ProductAsset]:
    """The explicit asset when given, else the latest of the preferred kinds.

    An explicit id that was deleted or belongs to another product resolves to
    None; it never falls back to a different image.
    """
    if asset_id is not None:
        asset = session.get(ProductAsset, asset_id)
        if asset is None or asset.product_id != product_id:
            return None
        return asset
    for kinds in SOURCE_KINDS[JobType(job_type)]:
        asset = latest_asset(session, product_id, kinds)
        if asset is not None:
            return asset
    return None