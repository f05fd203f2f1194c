from datetime import datetime, timezone

from flask import jsonify, request

from . import core_bp


@core_bp.route('/health', methods=['GET', 'HEAD'])
def health_check():
    """Health check endpoint for monitoring services"""
    if request.method == 'HEAD':
        return '', 200
    return jsonify({'status': 'ok', 'timestamp': datetime.now(timezone.utc).isoformat()})
