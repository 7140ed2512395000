"""Tests for job persistence, the status state machine and atomic claiming."""
import threading
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta

import pytest

from flight_tracker.database import create_db_engine, create_session_factory, init_schema
from flight_tracker.exceptions import InvalidJobTransition
from flight_tracker.models import Job, JobStatus, JobType
from flight_tracker.services import job_store


class TestCreateAndUpdate:
    def test_create_job_starts_queued(self, db_session):
        job = job_store.create_job(db_session, JobType.CHECK_ALL, progress_total=3, payload={"origin": "test"})
        assert job.status == "queued"
        assert job.progress_current == 0
        assert job.progress_total == 3
        assert job.payload == {"origin": "test"}
        assert job.started_at is None

    def test_unknown_type_rejected(self, db_session):
        with pytest.raises(ValueError):
            job_store.create_job(db_session, "defragment")

    def test_update_ignores_unknown_fields(self, db_session):
        job = job_store.create_job(db_session, JobType.CHECK_ALL)
        assert job_store.update_job(db_session, job.id, bogus=1, type="send_email") is None
        assert job_store.get_job(db_session, job.id).type == "check_all"

    def test_update_missing_job_returns_none(self, db_session):
        assert job_store.update_job(db_session, 999, progress_current=1) is None

    def test_update_applies_whitelisted_fields(self, db_session):
        job = job_store.create_job(db_session, JobType.CHECK_ALL, progress_total=4)
        updated = job_store.update_job(db_session, job.id, progress_current=2, bogus="x")
        assert updated.progress_current == 2
        assert updated.progress_total == 4

    def test_queued_cannot_jump_to_success(self, db_session):
        job = job_store.create_job(db_session, JobType.CHECK_ALL)
        with pytest.raises(InvalidJobTransition):
            job_store.update_job(db_session, job.id, status=JobStatus.SUCCESS)

    def test_terminal_status_is_final(self, db_session):
        job = job_store.create_job(db_session, JobType.CHECK_ALL)
        job_store.start_job(db_session, job.id)
        job_store.finish_job(db_session, job.id, JobStatus.SUCCESS, result={"checked": 0})

        with pytest.raises(InvalidJobTransition):
            job_store.update_job(db_session, job.id, status=JobStatus.RUNNING)
        with pytest.raises(InvalidJobTransition):
            job_store.finish_job(db_session, job.id, JobStatus.ERROR, error_text="late")

    def test_finish_records_result_and_time(self, db_session):
        job = job_store.create_job(db_session, JobType.CHECK_NOW)
        job_store.start_job(db_session, job.id)
        finished = job_store.finish_job(db_session, job.id, "error", error_text="boom", progress_current=1)
        assert finished.status == "error"
        assert finished.error_text == "boom"
        assert finished.progress_current == 1
        assert finished.finished_at is not None
        assert finished.is_terminal


class TestStartAndClaim:
    def test_start_only_moves_queued_jobs(self, db_session):
        job = job_store.create_job(db_session, JobType.CHECK_NOW)
        started = job_store.start_job(db_session, job.id)
        assert started.status == "running"
        assert started.started_at is not None
        # Second start loses
        assert job_store.start_job(db_session, job.id) is None

    def test_claim_takes_oldest_first(self, db_session):
        first = job_store.create_job(db_session, JobType.CHECK_ALL)
        second = job_store.create_job(db_session, JobType.CHECK_ALL)

        assert job_store.claim_next_job(db_session).id == first.id
        assert job_store.claim_next_job(db_session).id == second.id
        assert job_store.claim_next_job(db_session) is None

    def test_claim_filters_by_type(self, db_session):
        job_store.create_job(db_session, JobType.CHECK_ALL)
        flex = job_store.create_job(db_session, JobType.FLEX_SCAN)

        claimed = job_store.claim_next_job(db_session, ["flex_scan"])
        assert claimed.id == flex.id
        assert claimed.status == "running"

    def test_claim_empty_queue(self, db_session):
        assert job_store.claim_next_job(db_session) is None


class TestConcurrentClaim:
    """Claims race from separate threads and connections on a file-backed database."""

    @pytest.fixture
    def file_session_factory(self, tmp_path):
        engine = create_db_engine(f"sqlite:///{tmp_path / 'jobs.db'}")
        init_schema(engine)
        yield create_session_factory(engine)
        engine.dispose()

    def _race(self, session_factory, claimants: int):
        barrier = threading.Barrier(claimants)

        def claim():
            with session_factory() as db:
                barrier.wait()
                job = job_store.claim_next_job(db)
                return job.id if job else None

        with ThreadPoolExecutor(max_workers=claimants) as pool:
            futures = [pool.submit(claim) for _ in range(claimants)]
            return [f.result() for f in futures]

    def test_single_job_claimed_exactly_once(self, file_session_factory):
        with file_session_factory() as db:
            job = job_store.create_job(db, JobType.CHECK_NOW)

        results = self._race(file_session_factory, claimants=8)

        winners = [r for r in results if r is not None]
        assert winners == [job.id]
        with file_session_factory() as db:
            assert job_store.get_job(db, job.id).status == "running"

    def test_each_job_goes_to_one_claimant(self, file_session_factory):
        with file_session_factory() as db:
            ids = {job_store.create_job(db, JobType.CHECK_ALL).id for _ in range(3)}

        results = self._race(file_session_factory, claimants=6)

        winners = [r for r in results if r is not None]
        assert sorted(winners) == sorted(ids)
        assert results.count(None) == 3


class TestResetStuckJobs:
    def test_resets_only_old_running_jobs(self, db_session):
        stuck = job_store.create_job(db_session, JobType.CHECK_ALL)
        fresh = job_store.create_job(db_session, JobType.CHECK_ALL)
        queued = job_store.create_job(db_session, JobType.CHECK_ALL)
        job_store.start_job(db_session, stuck.id)
        job_store.start_job(db_session, fresh.id)

        db_session.query(Job).filter(Job.id == stuck.id).update(
            {"started_at": datetime.utcnow() - timedelta(minutes=45)}
        )
        db_session.commit()

        assert job_store.reset_stuck_jobs(db_session, threshold_minutes=30) == 1

        stuck = job_store.get_job(db_session, stuck.id)
        assert stuck.status == "queued"
        assert stuck.started_at is None
        assert job_store.get_job(db_session, fresh.id).status == "running"
        assert job_store.get_job(db_session, queued.id).status == "queued"

    def test_reset_job_can_be_claimed_again(self, db_session):
        job = job_store.create_job(db_session, JobType.CHECK_NOW)
        job_store.start_job(db_session, job.id)
        db_session.query(Job).filter(Job.id == job.id).update(
            {"started_at": datetime.utcnow() - timedelta(hours=2)}
        )
        db_session.commit()

        job_store.reset_stuck_jobs(db_session, threshold_minutes=30)
        assert job_store.claim_next_job(db_session).id == job.id

    def test_nothing_to_reset(self, db_session):
        assert job_store.reset_stuck_jobs(db_session, threshold_minutes=30) == 0
