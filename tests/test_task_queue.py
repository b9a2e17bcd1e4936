"""
Tests for the background task queue.
"""

import threading
import time
from datetime import datetime, timedelta
from unittest.mock import AsyncMock, patch

import pytest

from task_queue import TaskQueue, TaskStatus, submit_resume_fit_task


def _wait(task_queue, task_id, timeout=5.0):
    deadline = time.time() + timeout
    task = task_queue.get_task_status(task_id)
    while task.status in (TaskStatus.PENDING, TaskStatus.RUNNING) and time.time() < deadline:
        time.sleep(0.02)
    return task


@pytest.fixture
def task_queue():
    tq = TaskQueue(max_workers=2)
    yield tq
    tq.shutdown()


class TestTaskQueue:
    def test_runs_task_and_records_result(self, task_queue):
        task_id = task_queue.submit_task('unit', lambda x: {'value': x * 2}, 21)
        task = _wait(task_queue, task_id)
        assert task.status == TaskStatus.COMPLETED
        assert task.result == {'value': 42}
        assert task.progress == 100.0

    def test_failure_recorded(self, task_queue):
        def boom():
            raise RuntimeError('compile exploded')

        task = _wait(task_queue, task_queue.submit_task('unit', boom))
        assert task.status == TaskStatus.FAILED
        assert task.error == 'compile exploded'

    def test_cancelled_pending_task_never_runs(self):
        tq = TaskQueue(max_workers=1)
        release = threading.Event()
        calls = []
        try:
            blocker_id = tq.submit_task('unit', release.wait, 5)
            cancelled_id = tq.submit_task('unit', calls.append, 'ran')
            assert tq.cancel_task(cancelled_id)
            release.set()

            # Single worker runs in order, so the follow-up finishing means the
            # cancelled task has been skipped
            follow_up = _wait(tq, tq.submit_task('unit', lambda: {}))
            assert follow_up.status == TaskStatus.COMPLETED
            assert _wait(tq, blocker_id).status == TaskStatus.COMPLETED
            assert tq.get_task_status(cancelled_id).status == TaskStatus.CANCELLED
            assert calls == []
            assert not tq.cancel_task(blocker_id)
        finally:
            tq.shutdown()

    def test_cleanup_removes_only_old_finished_tasks(self, task_queue):
        done_id = task_queue.submit_task('unit', lambda: {})
        _wait(task_queue, done_id)
        task_queue.tasks[done_id].created_at = datetime.now() - timedelta(hours=48)

        recent_id = task_queue.submit_task('unit', lambda: {})
        _wait(task_queue, recent_id)

        assert task_queue.cleanup_old_tasks(hours=24) == 1
        assert task_queue.get_task_status(done_id) is None
        assert task_queue.get_task_status(recent_id) is not None

    def test_stats(self, task_queue):
        _wait(task_queue, task_queue.submit_task('resume_fit', lambda: {}))
        stats = task_queue.get_stats()
        assert stats['total_tasks'] == 1
        assert stats['by_type'] == {'resume_fit': 1}
        assert stats['by_status'] == {'completed': 1}
        assert stats['recent_completion_rate'] == 1.0

    def test_to_dict(self, task_queue):
        task = _wait(task_queue, task_queue.submit_task('unit', lambda: {'ok': True}))
        data = task.to_dict()
        assert data['status'] == 'completed'
        assert data['result'] == {'ok': True}
        assert data['completed_at'] is not None


class TestResumeFitTask:
    def test_runs_pipeline_in_own_event_loop(self, task_queue):
        terminal = {'type': 'complete', 'page_count': 1}
        payload = {'resume': 'x', 'provider': 'openai', 'model': 'gpt-5-mini'}
        events = []

        with patch('task_queue.get_task_queue', return_value=task_queue), \
                patch('resume_pipeline.run_resume_pipeline', AsyncMock(return_value=terminal)) as run:
            task_id = submit_resume_fit_task(payload, events.append)
            task = _wait(task_queue, task_id)

        assert task.status == TaskStatus.COMPLETED
        assert task.result == terminal
        assert task.metadata['provider'] == 'openai'
        assert run.await_args[0][0] is payload
