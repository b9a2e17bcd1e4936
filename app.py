#!/usr/bin/env python3
"""
Web API for the One-Page Resume pipeline

A Flask application exposing the convergence loop as a server-sent event
stream, plus a one-shot preview compile, environment key discovery and
performance data.
"""

import json
import queue
import sys
import threading
from typing import Any, Dict

from flask import Flask, Response, jsonify, request

import config
from pdf_utils import compile_latex
from performance_monitor import get_performance_dashboard_data
from resume_pipeline import TERMINAL_EVENT_TYPES
from task_queue import (
    FINISHED_STATUSES,
    cleanup_old_tasks,
    get_queue_stats,
    get_task_queue,
    submit_preview_compile_task,
    submit_resume_fit_task,
)

app = Flask(__name__)

SSE_KEEPALIVE_S = 15


def format_sse(event: Dict[str, Any]) -> str:
    return f"data: {json.dumps(event)}\n\n"


@app.route('/modify-resume', methods=['POST'])
def modify_resume():
    """Run one resume fit and stream its events as SSE"""
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        return jsonify({'success': False, 'error': 'Invalid JSON body'}), 400

    events = queue.Queue()
    cancel_event = threading.Event()

    # Side-by-side preview of the untouched resume
    preview_task_id = None
    if not data.get('isFollowUp') and data.get('resume'):
        preview_task_id = submit_preview_compile_task(data['resume'])

    task_id = submit_resume_fit_task(data, events.put, cancel_event=cancel_event)
    task_queue = get_task_queue()

    def generate():
        try:
            yield format_sse({
                'type': 'started',
                'task_id': task_id,
                'original_preview_task_id': preview_task_id,
            })
            while True:
                try:
                    event = events.get(timeout=SSE_KEEPALIVE_S)
                except queue.Empty:
                    task = task_queue.get_task_status(task_id)
                    if task is None or task.status in FINISHED_STATUSES:
                        yield format_sse({'type': 'error', 'message': (task and task.error) or 'Pipeline stopped'})
                        break
                    yield ': keep-alive\n\n'
                    continue

                yield format_sse(event)
                if event.get('type') in TERMINAL_EVENT_TYPES:
                    break
        finally:
            # Client gone or run finished; either way stop the loop
            cancel_event.set()
            task_queue.cancel_task(task_id)

    return Response(
        generate(),
        mimetype='text/event-stream',
        headers={'Cache-Control': 'no-cache', 'X-Accel-Buffering': 'no'},
    )


@app.route('/compile-latex', methods=['POST'])
def compile_latex_preview():
    """Compile a LaTeX document once and return the PDF"""
    try:
        data = request.get_json(silent=True) or {}
        latex = data.get('latex')
        if not latex or not isinstance(latex, str):
            return jsonify({'error': 'LaTeX source code is required'}), 400

        images = data.get('images')
        if not isinstance(images, list):
            images = None

        result = compile_latex(latex, images=images, timeout=config.PREVIEW_COMPILE_TIMEOUT_S)

        if result.success:
            return Response(
                result.pdf_bytes,
                mimetype='application/pdf',
                headers={
                    'Content-Disposition': 'inline; filename="document.pdf"',
                    'Cache-Control': 'no-cache',
                },
            )

        status = 500 if result.engine_missing else 422
        return jsonify({
            'error': result.error or 'LaTeX compilation failed',
            'logs': result.logs or 'No detailed logs available',
        }), status

    except Exception as e:
        print(f"❌ Error in compile-latex: {e}", file=sys.stderr)
        return jsonify({'error': str(e)}), 500


@app.route('/env-keys')
def env_keys():
    """First usable API key from the environment (Google preferred)"""
    found = config.detect_env_api_key()
    return jsonify({'provider': found['provider'], 'apiKey': found['api_key']})


@app.route('/models')
def list_models():
    return jsonify({'providers': config.PROVIDERS, 'models': config.MODELS})


@app.route('/task-status/<task_id>')
def get_task_status(task_id):
    """Get the status of a background task"""
    task = get_task_queue().get_task_status(task_id)
    if not task:
        return jsonify({'success': False, 'error': 'Task not found'}), 404

    response = task.to_dict()
    response['success'] = True
    return jsonify(response)


@app.route('/api/performance')
def api_performance():
    """API endpoint for performance data"""
    try:
        return jsonify(get_performance_dashboard_data())
    except Exception as e:
        return jsonify({'error': str(e)}), 500


@app.route('/api/performance/stats')
def api_performance_stats():
    """API endpoint for task queue statistics"""
    try:
        return jsonify({'tasks': get_queue_stats()})
    except Exception as e:
        return jsonify({'error': str(e)}), 500


@app.route('/api/performance/cleanup', methods=['POST'])
def api_performance_cleanup():
    """API endpoint for cleaning up old tasks"""
    try:
        return jsonify({'success': True, 'tasks_cleaned': cleanup_old_tasks()})
    except Exception as e:
        return jsonify({'error': str(e)}), 500


if __name__ == '__main__':
    print("🚀 Starting One-Page Resume API...")
    print("📝 Listening on http://localhost:8081")
    app.run(debug=False, host='127.0.0.1', port=8081, use_reloader=False, threaded=True)
