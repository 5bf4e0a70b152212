#!/usr/bin/env python3
"""
QuestLog JSON API
Flask front-end over :class:`app.services.CollectionService`.

The caller is identified by the ``X-User-Id`` request header; requests
without it are answered with 401.  Every :class:`app.errors.QuestLogError`
raised by the services is turned into ``{"error": ...}`` with the status code
the error carries.
"""

import logging
from functools import wraps

from flask import Flask, g, jsonify, request

from app.errors import QuestLogError, ValidationError

api_logger = logging.getLogger('questlog.api')

USER_HEADER = 'X-User-Id'


def require_user(f):
    """Decorator to require a caller id; stores it on ``flask.g.user_id``."""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        user_id = (request.headers.get(USER_HEADER) or '').strip()
        if not user_id:
            return jsonify({'error': 'Not authenticated'}), 401
        g.user_id = user_id
        return f(*args, **kwargs)
    return decorated_function


def _json_body() -> dict:
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError('body', 'expected a JSON object')
    return data


def _split_csv(raw):
    return [t for t in (raw or '').split(',') if t.strip()]


def create_app(questlog) -> Flask:
    """Build the Flask app around a :class:`questlog.QuestLog` composition root."""
    app = Flask(__name__)
    service = questlog.service

    @app.errorhandler(QuestLogError)
    def handle_questlog_error(err):
        api_logger.debug("%s %s -> %s: %s", request.method, request.path,
                         err.http_status, err.message)
        return jsonify(err.to_dict()), err.http_status

    @app.route('/api/status')
    def api_status():
        return jsonify({'status': 'ok', 'catalog': questlog.catalog is not None})

    # ------------------------------------------------------------------
    # Games (shared catalog)
    # ------------------------------------------------------------------

    @app.route('/api/games/search', methods=['GET'])
    @require_user
    def api_search_games():
        query = (request.args.get('query') or request.args.get('q') or '').strip()
        if not query:
            return jsonify({'error': 'Query parameter is required'}), 400
        return jsonify({'games': service.search_games(query)})

    @app.route('/api/games', methods=['POST'])
    @require_user
    def api_add_game():
        """Add a game from the catalog to the shared games table.

        Body JSON: {"external_id": "3498"}
        """
        external_id = _json_body().get('external_id')
        if not external_id:
            return jsonify({'error': 'external_id is required'}), 400
        return jsonify({'game': service.add_game_from_catalog(external_id)})

    @app.route('/api/games/<int:game_id>', methods=['GET'])
    @require_user
    def api_get_game(game_id):
        return jsonify({'game': service.get_game(game_id)})

    # ------------------------------------------------------------------
    # User collection
    # ------------------------------------------------------------------

    @app.route('/api/user/games', methods=['GET'])
    @require_user
    def api_list_user_games():
        """List the caller's games, optionally filtered by ``status`` or ``tags`` (comma-separated)."""
        tags = request.args.get('tags')
        if tags is not None:
            return jsonify({'user_games': service.find_user_games_by_tags(g.user_id, _split_csv(tags))})
        status = request.args.get('status') or None
        return jsonify({'user_games': service.list_user_games(g.user_id, status=status)})

    @app.route('/api/user/games', methods=['POST'])
    @require_user
    def api_add_user_game():
        """Add a game to the caller's collection.

        Body JSON: {"game_id": 1, "queue_id": 2, "status": "BACKLOG"}
        """
        data = _json_body()
        game_id = data.get('game_id')
        if not game_id:
            return jsonify({'error': 'Game ID is required'}), 400
        user_game = service.add_game_to_collection(
            g.user_id, game_id, queue_id=data.get('queue_id'), status=data.get('status'))
        return jsonify({'user_game': user_game})

    @app.route('/api/user/games/<int:user_game_id>', methods=['GET'])
    @require_user
    def api_get_user_game(user_game_id):
        return jsonify({'user_game': service.get_user_game(g.user_id, user_game_id)})

    @app.route('/api/user/games/<int:user_game_id>', methods=['PATCH'])
    @require_user
    def api_update_user_game(user_game_id):
        """Partially update a game.

        Body JSON: any of status, progress_percent, custom_main_time,
        custom_completion_time.
        """
        user_game = service.update_user_game(g.user_id, user_game_id, _json_body())
        return jsonify({'user_game': user_game})

    @app.route('/api/user/games/<int:user_game_id>', methods=['DELETE'])
    @require_user
    def api_remove_user_game(user_game_id):
        service.remove_game_from_collection(g.user_id, user_game_id)
        return jsonify({'success': True})

    # ------------------------------------------------------------------
    # Tags
    # ------------------------------------------------------------------

    @app.route('/api/user/games/<int:user_game_id>/tags', methods=['GET'])
    @require_user
    def api_get_game_tags(user_game_id):
        return jsonify({'tags': service.list_tags(g.user_id, user_game_id)})

    @app.route('/api/user/games/<int:user_game_id>/tags', methods=['POST'])
    @require_user
    def api_add_tag(user_game_id):
        """Add a tag to a game.

        Body JSON: {"tag": "cozy"}
        """
        tag = _json_body().get('tag')
        if not tag or not isinstance(tag, str):
            return jsonify({'error': 'Tag is required'}), 400
        return jsonify({'tag': service.add_tag(g.user_id, user_game_id, tag)}), 201

    @app.route('/api/user/games/<int:user_game_id>/tags', methods=['DELETE'])
    @require_user
    def api_remove_tag(user_game_id):
        tag = _json_body().get('tag') or request.args.get('tag')
        if not tag or not isinstance(tag, str):
            return jsonify({'error': 'Tag is required'}), 400
        service.remove_tag(g.user_id, user_game_id, tag)
        return jsonify({'success': True})

    @app.route('/api/user/tags', methods=['GET'])
    @require_user
    def api_get_all_tags():
        return jsonify({'tags': service.list_all_tags(g.user_id)})

    # ------------------------------------------------------------------
    # Queues
    # ------------------------------------------------------------------

    @app.route('/api/user/queues', methods=['GET'])
    @require_user
    def api_list_queues():
        return jsonify({'queues': service.list_queues(g.user_id)})

    @app.route('/api/user/queues', methods=['POST'])
    @require_user
    def api_create_queue():
        """Create a queue.

        Body JSON: {"name": "Short RPGs", "description": "", "filter_tags": ["rpg"]}
        """
        data = _json_body()
        name = data.get('name')
        if not name:
            return jsonify({'error': 'Queue name is required'}), 400
        filter_tags = data.get('filter_tags')
        if filter_tags is not None and (not isinstance(filter_tags, list)
                                        or not all(isinstance(t, str) for t in filter_tags)):
            raise ValidationError('filter_tags', 'expected a list of strings')
        queue = service.create_queue(g.user_id, name, data.get('description') or '',
                                     filter_tags=filter_tags)
        return jsonify({'queue': queue})

    @app.route('/api/user/queues/<int:queue_id>', methods=['GET'])
    @require_user
    def api_get_queue(queue_id):
        return jsonify({'queue': service.get_queue(g.user_id, queue_id)})

    @app.route('/api/user/queues/<int:queue_id>', methods=['PATCH'])
    @require_user
    def api_update_queue(queue_id):
        """Rename a queue and/or reorder its games.

        Body JSON: {"name": ..., "description": ...,
                    "game_orders": [{"id": 3, "position": 0}, ...]}
        """
        data = _json_body()
        queue = service.update_queue(g.user_id, queue_id, name=data.get('name'),
                                     description=data.get('description'),
                                     game_orders=data.get('game_orders'))
        return jsonify({'queue': queue})

    @app.route('/api/user/queues/<int:queue_id>', methods=['DELETE'])
    @require_user
    def api_delete_queue(queue_id):
        released = service.delete_queue(g.user_id, queue_id)
        return jsonify({'success': True, 'released': released})

    @app.route('/api/user/queues/<int:queue_id>/games', methods=['POST'])
    @require_user
    def api_add_to_queue(queue_id):
        """Append a game to a queue.

        Body JSON: {"user_game_id": 3}
        """
        user_game_id = _json_body().get('user_game_id')
        if not user_game_id:
            return jsonify({'error': 'user_game_id is required'}), 400
        return jsonify({'user_game': service.add_to_queue(g.user_id, queue_id, user_game_id)})

    @app.route('/api/user/queues/<int:queue_id>/games/<int:user_game_id>', methods=['DELETE'])
    @require_user
    def api_remove_from_queue(queue_id, user_game_id):
        service.get_queue(g.user_id, queue_id)
        if service.get_user_game(g.user_id, user_game_id)['queue_id'] != queue_id:
            return jsonify({'error': f'Game {user_game_id} is not in queue {queue_id}'}), 404
        return jsonify({'user_game': service.remove_from_queue(g.user_id, user_game_id)})

    @app.route('/api/user/queues/<int:queue_id>/matches', methods=['GET'])
    @require_user
    def api_queue_matches(queue_id):
        return jsonify({'matches': service.find_new_matches(g.user_id, queue_id)})

    return app
