#!/usr/bin/env python3
"""
GameTrack Web - JSON API for cross-platform profile comparison.

The logged-in GameTrack user is ``session['user_id']``; linking platform
accounts and logging in happen elsewhere.
"""

import argparse
import logging
import os
import sys
from functools import wraps
from typing import Optional

from flask import Flask, jsonify, request, session

import database
import gametrack
from app.services import ComparisonService

web_logger = logging.getLogger('gametrack.web')

app = Flask(__name__)
app.secret_key = os.getenv('SECRET_KEY') or os.urandom(24)

# Comparison service, built from config on first use (or by main())
_service: Optional[ComparisonService] = None


def get_service() -> ComparisonService:
    """Return the shared ComparisonService, creating it from config.json."""
    global _service
    if _service is None:
        config = gametrack.load_config(os.getenv('GAMETRACK_CONFIG', 'config.json'))
        _service = ComparisonService.from_config(config)
    return _service


def with_db_session(f):
    """Decorator that opens a database session and passes it as ``db``."""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        db = database.SessionLocal()
        try:
            return f(db, *args, **kwargs)
        finally:
            db.close()
    return decorated_function


def _respond(result: dict):
    """JSON response with 200 on success, 401 when not logged in, else 400."""
    if result.get('success'):
        return jsonify(result), 200
    if result.get('error') == 'Not authenticated':
        return jsonify(result), 401
    return jsonify(result), 400


def _required_arg(name: str) -> Optional[str]:
    value = (request.args.get(name) or '').strip()
    return value or None


def _missing(name: str):
    return jsonify({'success': False, 'error': f'Missing required parameter: {name}'}), 400


@app.route('/api/compare/<platform>')
@with_db_session
def api_compare(db, platform):
    """Compare the logged-in user's library with another player's"""
    identifier = _required_arg('identifier')
    if not identifier:
        return _missing('identifier')
    result = get_service().compare_profile(db, session.get('user_id'), platform, identifier)
    web_logger.info("compare %s %r -> %s", platform, identifier,
                    'ok' if result.success else result.error)
    return _respond(result.to_dict())


@app.route('/api/compare/<platform>/search')
@with_db_session
def api_compare_search(db, platform):
    """Look up a player on a platform"""
    identifier = _required_arg('identifier')
    if not identifier:
        return _missing('identifier')
    return _respond(get_service().search_user(db, session.get('user_id'), platform, identifier))


@app.route('/api/compare/<platform>/me')
@with_db_session
def api_compare_me(db, platform):
    """The logged-in user's own comparison profile"""
    result = get_service().get_current_user_comparison_data(db, session.get('user_id'), platform)
    return _respond(result.to_dict())


@app.route('/api/compare/<platform>/achievements')
@with_db_session
def api_compare_achievements(db, platform):
    """Achievement-by-achievement comparison for one game"""
    identifier = _required_arg('identifier')
    if not identifier:
        return _missing('identifier')
    title = _required_arg('title')
    if not title:
        return _missing('title')
    result = get_service().get_achievement_comparison(
        db, session.get('user_id'), platform, title, identifier)
    return _respond(result.to_dict())


def main():
    """Main entry point for the web server"""
    global _service
    parser = argparse.ArgumentParser(description='GameTrack Web API')
    parser.add_argument('--config', default='config.json', help='Path to config file')
    parser.add_argument('--host', default='127.0.0.1')
    parser.add_argument('--port', type=int, default=5000)
    args = parser.parse_args()

    try:
        config = gametrack.load_config(args.config)
    except ValueError as e:
        print(e, file=sys.stderr)
        return 1
    gametrack.setup_logging(config.get('log_level', 'WARNING'))

    database.configure(config['database_url'])
    if not database.init_db():
        web_logger.warning('Database initialization reported failure')
    if config.get('secret_key'):
        app.secret_key = config['secret_key']
    _service = ComparisonService.from_config(config)

    web_logger.info("Serving on http://%s:%d", args.host, args.port)
    app.run(host=args.host, port=args.port, debug=False)
    return 0


if __name__ == "__main__":
    sys.exit(main())
