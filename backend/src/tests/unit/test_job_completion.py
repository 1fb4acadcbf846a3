"""Job completion write path: start, complete (idempotent), fail."""

import pytest
from sqlalchemy import func, select

from src.jobs.completion import JobCompletionHandler, UnknownJobError, VariantArtifact
from src.jobs.models import JobStatus, ProcessingJob
from src.models.file import FileStatus
from src.models.file_variant import FileVariant

ARTIFACT = VariantArtifact(
    storage_key="variants/thumb.jpg",
    content_type="image/jpeg",
    size_bytes=2048,
    width=300,
    height=300,
)


@pytest.fixture
def file(make_user, make_file):
    return make_file(make_user())


@pytest.fixture
def make_job(db_session, file):
    def _make_job(variant_type="thumbnail", status=JobStatus.PENDING):
        job = ProcessingJob(
            file_id=file.id, job_type="thumbnail", variant_type=variant_type, status=status,
        )
        db_session.add(job)
        db_session.commit()
        return job

    return _make_job


def test_unknown_job(db_session):
    with pytest.raises(UnknownJobError):
        JobCompletionHandler(db_session).mark_running("missing")


def test_mark_running(db_session, file, make_job):
    job = make_job()
    JobCompletionHandler(db_session).mark_running(job.id)

    db_session.refresh(job)
    db_session.refresh(file)
    assert job.status == JobStatus.RUNNING
    assert job.attempts == 1
    assert job.started_at is not None
    assert file.status == FileStatus.PROCESSING


def test_complete_records_variant_and_finishes_file(db_session, file, make_job):
    job = make_job()
    variant = JobCompletionHandler(db_session).complete(job.id, ARTIFACT)

    db_session.refresh(job)
    db_session.refresh(file)
    assert variant.variant_type == "thumbnail"
    assert variant.width == 300
    assert job.status == JobStatus.COMPLETED
    assert file.status == FileStatus.COMPLETED


def test_file_stays_processing_while_other_jobs_run(db_session, file, make_job):
    job = make_job("sm")
    make_job("md", status=JobStatus.RUNNING)
    handler = JobCompletionHandler(db_session)
    handler.mark_running(job.id)

    handler.complete(job.id, ARTIFACT)

    db_session.refresh(file)
    assert file.status == FileStatus.PROCESSING


def test_duplicate_completion_creates_one_variant(db_session, file, make_job):
    job = make_job()
    handler = JobCompletionHandler(db_session)
    first = handler.complete(job.id, ARTIFACT)
    second = handler.complete(job.id, ARTIFACT)

    assert first.id == second.id
    count = db_session.execute(
        select(func.count()).select_from(FileVariant).where(FileVariant.file_id == file.id)
    ).scalar()
    assert count == 1


def test_fail_marks_job_and_file(db_session, file, make_job):
    job = make_job()
    JobCompletionHandler(db_session).fail(job.id, "x" * 5000)

    db_session.refresh(job)
    db_session.refresh(file)
    assert job.status == JobStatus.FAILED
    assert job.attempts == 1
    assert len(job.error_message) == 2000
    assert file.status == FileStatus.FAILED


def test_start_report_after_completion_is_ignored(db_session, make_job):
    job = make_job()
    handler = JobCompletionHandler(db_session)
    handler.complete(job.id, ARTIFACT)

    handler.mark_running(job.id)
    db_session.refresh(job)
    assert job.status == JobStatus.COMPLETED
