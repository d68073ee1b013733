"""
Sync API Blueprint
Manual trigger for a sync run, guarded by a bearer token.
"""

import hmac
import threading

from flask import Blueprint, current_app, jsonify, request

from jira_sync.utils.logger import get_logger

logger = get_logger(__name__)

sync_bp = Blueprint('sync', __name__, url_prefix='/api/sync')

# One run at a time per process
_run_lock = threading.Lock()


def _authorized() -> bool:
    """Check the Authorization header against the configured trigger secret."""
    secret = current_app.config['SYNC_CONFIG'].trigger_secret
    header = request.headers.get('Authorization', '')
    token = header[7:] if header.startswith('Bearer ') else ''

    if not secret or not token:
        return False
    return hmac.compare_digest(token.encode('utf-8'), secret.encode('utf-8'))


@sync_bp.route('/run', methods=['POST'])
def trigger_sync():
    """
    Trigger a sync run.

    Query params:
        since: Optional ISO-8601 lower bound for the window

    Returns:
        JSON with the run outcome and counts
    """
    if not _authorized():
        logger.warning(
            f"Unauthorized sync trigger attempt from {request.remote_addr} "
            f"(auth header present: {'Authorization' in request.headers})"
        )
        return jsonify({'success': False, 'error': 'Unauthorized'}), 401

    since = request.args.get('since') or None

    if not _run_lock.acquire(blocking=False):
        return jsonify({'success': False, 'error': 'A sync run is already in progress'}), 409

    try:
        logger.info(f"Sync triggered via API: since={since or 'default'}")
        runner = current_app.config['SYNC_RUNNER']
        result = runner(current_app.config['SYNC_CONFIG'], since=since)
    finally:
        _run_lock.release()

    body = {'success': result.succeeded, 'run': result.to_dict()}
    return jsonify(body), (200 if result.succeeded else 500)
