#!/usr/bin/env python3
"""
Background Task Queue for the One-Page Resume pipeline

Handles long-running operations off the request thread:
1. Resume fit runs (the compile -> measure -> rewrite loop)
2. Preview compiles of the untouched resume

Tasks run on a thread pool so independent runs progress concurrently; each
run is sequential inside its own worker. Status is tracked per task id.
"""

import asyncio
import queue
import sys
import threading
import uuid
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

import config


class TaskStatus(Enum):
    """Task status enumeration"""
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


FINISHED_STATUSES = (TaskStatus.COMPLETED, TaskStatus.FAILED, TaskStatus.CANCELLED)


@dataclass
class Task:
    """Task data structure"""
    id: str
    task_type: str
    status: TaskStatus
    created_at: datetime
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    progress: float = 0.0
    result: Optional[Dict[str, Any]] = None
    error: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'task_type': self.task_type,
            'status': self.status.value,
            'created_at': self.created_at.isoformat(),
            'started_at': self.started_at.isoformat() if self.started_at else None,
            'completed_at': self.completed_at.isoformat() if self.completed_at else None,
            'progress': self.progress,
            'result': self.result,
            'error': self.error,
            'metadata': self.metadata or {},
        }


class TaskQueue:
    """Background task queue with status tracking"""

    def __init__(self, max_workers: int = 4):
        self.max_workers = max_workers
        self.executor = ThreadPoolExecutor(max_workers=max_workers)
        self.tasks: Dict[str, Task] = {}
        self.task_queue = queue.Queue()
        self.lock = threading.Lock()
        self.running = True

        # Start background dispatcher
        self.worker_thread = threading.Thread(
            target=self._worker_loop, daemon=True)
        self.worker_thread.start()

    def _worker_loop(self):
        """Hand queued tasks to the executor"""
        while self.running:
            try:
                task_data = self.task_queue.get(timeout=1.0)
                if task_data is None:  # Shutdown signal
                    break

                task_id, func, args, kwargs = task_data
                self.executor.submit(self._execute_task, task_id, func, args, kwargs)

            except queue.Empty:
                continue
            except RuntimeError as e:
                # Executor already shut down
                print(f"Worker loop error: {e}", file=sys.stderr)
                break

    def _execute_task(self, task_id: str, func: Callable, args: tuple, kwargs: dict):
        """Execute a single task"""
        task = self.tasks.get(task_id)
        if not task or task.status == TaskStatus.CANCELLED:
            return

        try:
            task.status = TaskStatus.RUNNING
            task.started_at = datetime.now()

            result = func(*args, **kwargs)

            task.result = result
            task.progress = 100.0
            task.completed_at = datetime.now()
            task.status = TaskStatus.COMPLETED

        except Exception as e:
            task.error = str(e)
            task.completed_at = datetime.now()
            task.status = TaskStatus.FAILED
            print(f"❌ Task {task_id} ({task.task_type}) failed: {e}", file=sys.stderr)

    def submit_task(self, task_type: str, func: Callable, *args,
                    metadata: Optional[Dict[str, Any]] = None, **kwargs) -> str:
        """Submit a task for background execution"""
        task_id = str(uuid.uuid4())

        task = Task(
            id=task_id,
            task_type=task_type,
            status=TaskStatus.PENDING,
            created_at=datetime.now(),
            metadata=metadata or {}
        )
        with self.lock:
            self.tasks[task_id] = task

        self.task_queue.put((task_id, func, args, kwargs))
        return task_id

    def get_task_status(self, task_id: str) -> Optional[Task]:
        """Get task status by ID"""
        return self.tasks.get(task_id)

    def get_recent_tasks(self, hours: int = 24) -> List[Task]:
        """Get tasks created within the last N hours"""
        cutoff = datetime.now() - timedelta(hours=hours)
        return [task for task in list(self.tasks.values()) if task.created_at >= cutoff]

    def cancel_task(self, task_id: str) -> bool:
        """Cancel a pending task"""
        task = self.tasks.get(task_id)
        if task and task.status == TaskStatus.PENDING:
            task.status = TaskStatus.CANCELLED
            task.completed_at = datetime.now()
            return True
        return False

    def cleanup_old_tasks(self, hours: int = 24) -> int:
        """Remove old finished tasks"""
        cutoff = datetime.now() - timedelta(hours=hours)
        with self.lock:
            task_ids_to_remove = [
                task_id for task_id, task in self.tasks.items()
                if task.created_at < cutoff and task.status in FINISHED_STATUSES
            ]
            for task_id in task_ids_to_remove:
                del self.tasks[task_id]
        return len(task_ids_to_remove)

    def shutdown(self):
        """Shutdown the task queue"""
        self.running = False
        self.task_queue.put(None)
        self.worker_thread.join(timeout=2.0)
        self.executor.shutdown(wait=True)

    def get_stats(self) -> Dict[str, Any]:
        """Get task queue statistics"""
        stats = {
            'total_tasks': len(self.tasks),
            'by_status': {},
            'by_type': {},
            'recent_completion_rate': 0.0
        }

        for task in list(self.tasks.values()):
            status = task.status.value
            stats['by_status'][status] = stats['by_status'].get(status, 0) + 1
            stats['by_type'][task.task_type] = stats['by_type'].get(task.task_type, 0) + 1

        recent_tasks = self.get_recent_tasks(1)  # Last hour
        if recent_tasks:
            completed = sum(1 for t in recent_tasks if t.status == TaskStatus.COMPLETED)
            stats['recent_completion_rate'] = completed / len(recent_tasks)

        return stats


# Global task queue instance
_task_queue = None


def get_task_queue() -> TaskQueue:
    """Get the global task queue instance"""
    global _task_queue
    if _task_queue is None:
        _task_queue = TaskQueue()
    return _task_queue


def submit_resume_fit_task(payload: Dict[str, Any], emit: Callable[[Dict[str, Any]], None],
                           cancel_event: Optional[threading.Event] = None,
                           request_id: Optional[str] = None) -> str:
    """Submit a resume fit run; events are delivered through `emit`."""
    from resume_pipeline import run_resume_pipeline

    def fit_worker():
        loop = asyncio.new_event_loop()
        asyncio.set_event_loop(loop)
        try:
            return loop.run_until_complete(
                run_resume_pipeline(payload, emit, cancel_event=cancel_event, request_id=request_id)
            )
        finally:
            loop.close()

    task_queue = get_task_queue()
    return task_queue.submit_task(
        "resume_fit",
        fit_worker,
        metadata={
            "provider": payload.get("provider"),
            "model": payload.get("model"),
            "resume_length": len(payload.get("resume") or ''),
        }
    )


def submit_preview_compile_task(latex: str, images: Optional[List[Dict[str, str]]] = None) -> str:
    """Compile a document for preview; the result carries page count and the PDF as base64."""
    from pdf_utils import compile_latex, get_page_count
    import base64

    def preview_worker():
        result = compile_latex(latex, images=images, timeout=config.PREVIEW_COMPILE_TIMEOUT_S)
        if not result.success:
            raise RuntimeError(result.error or 'Compilation failed')
        return {
            'page_count': get_page_count(result.pdf_bytes),
            'pdf_base64': base64.b64encode(result.pdf_bytes).decode('ascii'),
        }

    task_queue = get_task_queue()
    return task_queue.submit_task(
        "preview_compile",
        preview_worker,
        metadata={"latex_length": len(latex)}
    )


def cleanup_old_tasks() -> int:
    """Clean up old completed tasks"""
    return get_task_queue().cleanup_old_tasks()


def get_queue_stats() -> Dict[str, Any]:
    """Get task queue statistics"""
    return get_task_queue().get_stats()
