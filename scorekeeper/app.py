import os
import logging
from flask import Flask, request, jsonify
from flask_login import current_user, login_required
from sqlalchemy.exc import SQLAlchemyError

from shared.errors import DomainError
from shared.pubsub import PubSubClient
from .auth import login_manager
from .broadcast_hub import BroadcastHub
from .config import config
from .coordinator import Coordinator
from .match_engine import MatchEngine
from .models import db
from .rating_engine import RatingEngine
from .rating_store import RatingStore
from .registration_ledger import RegistrationLedger
from .storage import Storage, configure_sqlite_locking
from .validation import parse_id, parse_limit, require_json_object

logger = logging.getLogger(__name__)


def configure_logging(app: Flask):
    level = getattr(logging, str(app.config.get('LOG_LEVEL', 'INFO')).upper(), logging.INFO)
    logging.basicConfig(
        level=level,
        format='%(asctime)s %(levelname)s [%(name)s] %(message)s'
    )
    app.logger.setLevel(level)


def _configure_engine_options(app: Flask):
    uri = app.config['SQLALCHEMY_DATABASE_URI']
    if not uri.startswith('sqlite'):
        return
    options = dict(app.config.get('SQLALCHEMY_ENGINE_OPTIONS', {}))
    connect_args = dict(options.get('connect_args', {}))
    connect_args.setdefault('timeout', app.config['SQLITE_BUSY_TIMEOUT'])
    connect_args.setdefault('check_same_thread', False)
    options['connect_args'] = connect_args
    app.config['SQLALCHEMY_ENGINE_OPTIONS'] = options


def create_app(config_name: str = None, test_config: dict = None) -> Flask:
    """Application factory for the scorekeeper service."""
    if config_name is None:
        config_name = os.getenv('FLASK_ENV', 'development')

    app = Flask(__name__)
    app.config.from_object(config[config_name])
    if test_config:
        app.config.update(test_config)

    configure_logging(app)
    _configure_engine_options(app)

    # Initialize extensions
    db.init_app(app)
    login_manager.init_app(app)

    with app.app_context():
        configure_sqlite_locking(db.engine)
        db.create_all()

    # Initialize services
    relay = PubSubClient(app.config['REDIS_URL']) if app.config['REDIS_URL'] else None
    hub = BroadcastHub(
        queue_size=app.config['LIVE_QUEUE_SIZE'],
        relay=relay,
        relay_backlog=app.config['RELAY_BACKLOG']
    )
    storage = Storage(db)
    rating_engine = RatingEngine.from_config(app.config)

    # Store services on app for access in routes
    app.storage = storage
    app.rating_engine = rating_engine
    app.ratings = RatingStore(storage, rating_engine)
    app.matches = MatchEngine(storage)
    app.ledger = RegistrationLedger(storage, hub)
    app.hub = hub
    app.relay = relay
    app.coordinator = Coordinator(storage, app.matches, rating_engine, app.ratings, hub)

    register_error_handlers(app)
    register_api_routes(app)

    from .routes import matches
    app.register_blueprint(matches.bp)

    logger.info(f"Scorekeeper started with '{config_name}' config")
    return app


def register_error_handlers(app: Flask):

    @app.errorhandler(DomainError)
    def handle_domain_error(error: DomainError):
        if error.status_code >= 500:
            logger.error(f"{error.kind}: {error.message}")
        return jsonify({'error': error.to_dict()}), error.status_code


def register_api_routes(app: Flask):
    """Register API routes."""

    # ==================== Ratings ====================

    @app.route('/api/v1/ratings/leaderboard', methods=['GET'])
    def api_leaderboard():
        """Top players by mean rating."""
        cap = app.config['LEADERBOARD_LIMIT']
        limit = parse_limit(request.args.get('limit'), default=cap, maximum=cap)
        players = app.ratings.leaderboard(limit)
        return jsonify({
            'players': [p.to_dict() for p in players],
            'count': len(players),
            'limit': limit
        })

    @app.route('/api/v1/ratings/<player_id>', methods=['GET'])
    def api_get_rating(player_id):
        rating = app.ratings.get(parse_id(player_id, 'player_id'))
        return jsonify(rating.to_dict())

    @app.route('/api/v1/ratings/<player_id>/history', methods=['GET'])
    def api_rating_history(player_id):
        """Rating changes with the match and tournament that caused them."""
        pid = parse_id(player_id, 'player_id')
        limit = parse_limit(request.args.get('limit'), default=50, maximum=500)
        history = app.ratings.history(pid, limit=limit)
        return jsonify({
            'player_id': pid,
            'history': [h.to_dict() for h in history],
            'count': len(history)
        })

    # ==================== Registration ====================

    @app.route('/api/v1/tournaments/<tournament_id>/register', methods=['POST'])
    @login_required
    def api_register(tournament_id):
        data = require_json_object(request.get_json(silent=True))
        txn_id = data.get('txn_id')
        if txn_id is not None:
            txn_id = str(txn_id)[:36]

        registration = app.ledger.register(
            parse_id(tournament_id, 'tournament_id'),
            current_user.player_id,
            txn_id=txn_id
        )
        return jsonify({
            'message': 'Registered',
            'registration': registration
        }), 201

    @app.route('/api/v1/registrations/<registration_id>', methods=['DELETE'])
    @login_required
    def api_unregister(registration_id):
        registration = app.ledger.unregister(
            parse_id(registration_id, 'registration_id'),
            current_user
        )
        return jsonify({
            'message': 'Unregistered',
            'registration': registration
        })

    @app.route('/api/v1/registrations', methods=['GET'])
    @login_required
    def api_my_registrations():
        registrations = app.ledger.registrations_for_player(current_user.player_id)
        return jsonify({
            'registrations': registrations,
            'count': len(registrations)
        })

    @app.route('/api/v1/tournaments/<tournament_id>/registrations', methods=['GET'])
    @login_required
    def api_tournament_registrations(tournament_id):
        registrations = app.ledger.registrations_for_tournament(
            parse_id(tournament_id, 'tournament_id'),
            current_user
        )
        return jsonify({
            'registrations': registrations,
            'count': len(registrations)
        })

    # ==================== Health Check ====================

    @app.route('/health')
    @app.route('/api/v1/health')
    def health_check():
        """Health check endpoint."""
        try:
            db.session.execute(db.text('SELECT 1'))
            db_ok = True
        except SQLAlchemyError as e:
            logger.warning(f"Database health check failed: {e}")
            db_ok = False

        redis_status = 'disabled'
        redis_ok = True
        if app.relay is not None:
            redis_ok = app.relay.ping()
            redis_status = 'connected' if redis_ok else 'disconnected'

        status = 'healthy' if (redis_ok and db_ok) else 'unhealthy'
        code = 200 if status == 'healthy' else 503

        return jsonify({
            'status': status,
            'redis': redis_status,
            'database': 'connected' if db_ok else 'disconnected'
        }), code
