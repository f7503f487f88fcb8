"""Flask JSON dashboard exposing training feeds and lifecycle commands.

Flask serves requests on its own threads; every call that touches the agent
is handed to the orchestrator's event loop, which runs in a background thread.
"""

import asyncio
import threading
from typing import Any, Callable

import flask
from flask import Flask, jsonify

from autopilot.training import TrainingOrchestrator


class LoopRunner:
    """Owns an asyncio event loop running in a daemon thread."""

    def __init__(self, timeout: float = 30.0):
        self.timeout = timeout
        self.loop = asyncio.new_event_loop()
        self.thread = threading.Thread(target=self._run, name='autopilot-loop', daemon=True)
        self.thread.start()

    def _run(self):
        asyncio.set_event_loop(self.loop)
        self.loop.run_forever()

    def submit(self, coro) -> Any:
        """Run ``coro`` on the loop and block until it finishes."""
        return asyncio.run_coroutine_threadsafe(coro, self.loop).result(self.timeout)

    def call(self, fn: Callable, *args, **kwargs) -> Any:
        """Run a plain callable on the loop thread and return its result."""
        async def _invoke():
            return fn(*args, **kwargs)
        return self.submit(_invoke())

    def stop(self):
        self.loop.call_soon_threadsafe(self.loop.stop)
        self.thread.join(timeout=self.timeout)


def error_response(message: str, status: int = 400):
    return jsonify({'status': 'error', 'message': message}), status


def is_number(value, integral: bool = False) -> bool:
    if isinstance(value, bool):
        return False
    return isinstance(value, int) if integral else isinstance(value, (int, float))


def create_app(orchestrator: TrainingOrchestrator, runner: LoopRunner) -> Flask:
    app = Flask(__name__)
    reporter = orchestrator.reporter

    @app.route('/api/metrics')
    def get_metrics():
        """Latest metrics plus the full history"""
        latest, history = runner.call(lambda: (reporter.latest, reporter.history))
        return jsonify({
            'latest': latest.to_dict() if latest else None,
            'history': [m.to_dict() for m in history],
        })

    @app.route('/api/logs')
    def get_logs():
        """Most recent log lines, newest first"""
        lines = runner.call(reporter.log_feed.backlog)
        return jsonify({'logs': list(reversed(lines))})

    @app.route('/api/report')
    def get_report():
        return jsonify({'report': runner.call(reporter.generate_report)})

    @app.route('/api/status')
    def get_status():
        return jsonify(runner.call(orchestrator.get_status))

    @app.route('/api/config', methods=['GET'])
    def get_config():
        return jsonify(runner.call(lambda: orchestrator.agent.get_config().to_dict()))

    @app.route('/api/config', methods=['POST'])
    def update_config():
        """Merge a partial learning config"""
        data = flask.request.get_json(silent=True) or {}
        if not isinstance(data, dict):
            return error_response('Expected a JSON object')
        try:
            runner.submit(orchestrator.update_learning_config(**data))
        except (ValueError, TypeError) as e:
            return error_response(str(e))
        return jsonify({'status': 'updated',
                        'config': runner.call(lambda: orchestrator.agent.get_config().to_dict())})

    @app.route('/api/train', methods=['POST'])
    def start_training():
        data = flask.request.get_json(silent=True) or {}
        if not isinstance(data, dict):
            return error_response('Expected a JSON object')
        max_steps = data.get('max_steps')
        target = data.get('target_average_reward')
        if max_steps is not None and (not is_number(max_steps, integral=True) or max_steps < 1):
            return error_response('max_steps must be a positive integer')
        if target is not None and not is_number(target):
            return error_response('target_average_reward must be a number')
        runner.call(orchestrator.start_training, max_steps, target)
        return jsonify({'status': 'started'})

    @app.route('/api/stop', methods=['POST'])
    def stop_training():
        runner.call(orchestrator.stop_training)
        return jsonify({'status': 'stopping'})

    @app.route('/api/save', methods=['POST'])
    def save_model():
        slot = (flask.request.get_json(silent=True) or {}).get('slot')
        success = runner.submit(orchestrator.save_model(slot))
        return jsonify({'status': 'saved' if success else 'failed'})

    @app.route('/api/load', methods=['POST'])
    def load_model():
        slot = (flask.request.get_json(silent=True) or {}).get('slot')
        success = runner.submit(orchestrator.load_model(slot))
        return jsonify({'status': 'loaded' if success else 'failed'})

    @app.route('/api/reset', methods=['POST'])
    def reset_learning():
        runner.submit(orchestrator.reset_learning())
        return jsonify({'status': 'reset'})

    @app.route('/api/models')
    def list_models():
        store = orchestrator.agent.store
        return jsonify({'models': store.list_models() if store is not None else []})

    return app
