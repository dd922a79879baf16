from datetime import timezone

import pytest
from sqlmodel import Session

from itp_studio.core.errors import JobStateError
from itp_studio.models.entities import Job, JobStatus, JobType
from itp_studio.schemas.contracts import UpscaleInput
from itp_studio.services import jobs as job_store


def test_job_moves_forward_and_stamps_times():
    job = Job(product_id=1, type=JobType.UPSCALE)
    job.transition_to(JobStatus.RUNNING)
    assert job.started_at is not None
    job.transition_to(JobStatus.SUCCEEDED)
    assert job.finished_at is not None


@pytest.mark.parametrize(
    "start,target",
    [
        (JobStatus.QUEUED, JobStatus.SUCCEEDED),
        (JobStatus.RUNNING, JobStatus.QUEUED),
        (JobStatus.SUCCEEDED, JobStatus.RUNNING),
        (JobStatus.FAILED, JobStatus.SUCCEEDED),
    ],
)
def test_illegal_transitions_raise(start, target):
    job = Job(product_id=1, type=JobType.UPSCALE, status=start)
    with pytest.raises(JobStateError):
        job.transition_to(target)


def test_claim_is_granted_once(session, product):
    job = job_store.create_job(
        session, product.id, JobType.UPSCALE, UpscaleInput(source_asset_id=1, image_url="mock://x.png")
    )
    assert job_store.claim_job(session, job) is True
    assert job.status == JobStatus.RUNNING
    assert job_store.claim_job(session, job) is False


def test_attempt_counts_jobs_of_same_type(session, product):
    params = UpscaleInput(source_asset_id=1, image_url="mock://x.png")
    first = job_store.create_job(session, product.id, JobType.UPSCALE, params)
    second = job_store.create_job(session, product.id, JobType.UPSCALE, params)
    assert (first.attempt, second.attempt) == (1, 2)
    assert second.input["kind"] == "upscale"


def test_fail_job_from_queued_goes_through_running(session, product):
    job = job_store.create_job(
        session, product.id, JobType.UPSCALE, UpscaleInput(source_asset_id=1, image_url="mock://x.png")
    )
    job_store.fail_job(session, job, "boom")
    assert job.status == JobStatus.FAILED
    assert job.started_at is not None
    assert job.error == "boom"


def test_timestamps_are_timezone_aware():
    job = Job(product_id=1, type=JobType.UPSCALE)
    job.transition_to(JobStatus.RUNNING)
    assert job.created_at.tzinfo is not None
    assert job.started_at.tzinfo == timezone.utc


def test_job_row_with_aware_timestamps_is_stored(session, product):
    job = job_store.create_job(
        session, product.id, JobType.UPSCALE, UpscaleInput(source_asset_id=1, image_url="mock://x.png")
    )
    assert job.id is not None
    assert job_store.claim_job(session, job) is True
    assert job.started_at is not None


def test_finish_job_is_applied_once(services, session, product):
    job = job_store.create_job(
        session, product.id, JobType.UPSCALE, UpscaleInput(source_asset_id=1, image_url="mock://x.png")
    )
    job_store.claim_job(session, job)
    with Session(services.engine, expire_on_commit=False) as other:
        stale = other.get(Job, job.id)
        assert job_store.finish_job(session, job, JobStatus.SUCCEEDED) is True

        assert job_store.finish_job(other, stale, JobStatus.FAILED, error="late writer") is False
        assert stale.status == JobStatus.SUCCEEDED
        assert stale.error is None
