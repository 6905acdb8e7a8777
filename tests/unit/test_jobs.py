"""
Unit tests for single-slot background job tracking.
"""

import asyncio

import pytest

from ledgerbridge.engine.jobs import JobTracker
from ledgerbridge.models.enums import JobKind, JobStatus
from ledgerbridge.models.jobs import CategorizeJobState, SyncJobState


class TestJobTracker:
    """Tests for JobTracker lifecycle."""

    def test_initial_state_is_idle(self):
        tracker = JobTracker(JobKind.SYNC, None)

        state = tracker.get()

        assert isinstance(state, SyncJobState)
        assert state.status == JobStatus.IDLE
        assert state.kind == JobKind.SYNC

    @pytest.mark.asyncio
    async def test_run_to_done_with_counters(self):
        async def runner(limit, on_progress):
            on_progress({"total": limit, "processed": 1, "categorized": 1, "failed": 0})
            return {"processed": 2, "categorized": 2, "failed": 0}

        tracker = JobTracker(JobKind.CATEGORIZE, runner)

        started = await tracker.start(2)
        final = await tracker.wait()

        assert started.status == JobStatus.RUNNING
        assert started.started_at is not None
        assert isinstance(final, CategorizeJobState)
        assert final.status == JobStatus.DONE
        assert final.total == 2
        assert final.processed == 2
        assert final.categorized == 2
        assert final.finished_at is not None

    @pytest.mark.asyncio
    async def test_second_start_returns_running_snapshot(self):
        release = asyncio.Event()
        calls = []

        async def runner(limit, on_progress):
            calls.append(limit)
            on_progress({"total": 5, "processed": 1})
            await release.wait()
            return {"processed": 5}

        tracker = JobTracker(JobKind.SYNC, runner)

        await tracker.start(5)
        await asyncio.sleep(0)
        second = await tracker.start(99)

        assert second.status == JobStatus.RUNNING
        assert second.processed == 1

        release.set()
        final = await tracker.wait()

        assert calls == [5]
        assert final.status == JobStatus.DONE

    @pytest.mark.asyncio
    async def test_runner_exception_sets_error_state(self):
        async def runner(limit, on_progress):
            on_progress({"total": 3, "processed": 1, "synced": 1})
            raise RuntimeError("QuickBooks connection not found")

        tracker = JobTracker(JobKind.SYNC, runner)

        await tracker.start(3)
        final = await tracker.wait()

        assert final.status == JobStatus.ERROR
        assert final.error == "QuickBooks connection not found"
        assert final.processed == 1
        assert final.finished_at is not None

    @pytest.mark.asyncio
    async def test_restart_after_finish_resets_counters(self):
        async def runner(limit, on_progress):
            return {"processed": limit, "synced": limit}

        tracker = JobTracker(JobKind.SYNC, runner)
        await tracker.start(4)
        await tracker.wait()

        restarted = await tracker.start(1)

        assert restarted.status == JobStatus.RUNNING
        assert restarted.processed == 0
        assert (await tracker.wait()).processed == 1

    @pytest.mark.asyncio
    async def test_unknown_counters_are_ignored(self):
        async def runner(limit, on_progress):
            return {"processed": 1, "synced": 1, "skipped": 0, "failed": 0, "unexpected": 7}

        tracker = JobTracker(JobKind.SYNC, runner)
        await tracker.start(1)

        final = await tracker.wait()

        assert final.status == JobStatus.DONE
        assert not hasattr(final, "unexpected")

    @pytest.mark.asyncio
    async def test_snapshots_are_copies(self):
        async def runner(limit, on_progress):
            return {"processed": 1}

        tracker = JobTracker(JobKind.CATEGORIZE, runner)
        snapshot = tracker.get()
        await tracker.start(1)
        await tracker.wait()

        assert snapshot.status == JobStatus.IDLE

    @pytest.mark.asyncio
    async def test_cancelled_job_ends_in_error_state(self):
        started = asyncio.Event()

        async def runner(limit, on_progress):
            on_progress({"total": 2, "processed": 1})
            started.set()
            await asyncio.Event().wait()

        tracker = JobTracker(JobKind.CATEGORIZE, runner)
        await tracker.start(2)
        await started.wait()

        tracker._task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await tracker.wait()

        final = tracker.get()
        assert final.status == JobStatus.ERROR
        assert final.error == "Job cancelled"
        assert final.processed == 1
        assert final.finished_at is not None

        restarted = await tracker.start(1)
        assert restarted.status == JobStatus.RUNNING
        restarted_task = tracker._task
        restarted_task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await restarted_task
