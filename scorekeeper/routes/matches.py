import json
import logging
from flask import Blueprint, request, jsonify, Response, current_app
from flask_login import current_user, login_required

from shared.errors import NotFound, ValidationError
from shared.state_machine import MatchStateMachine
from scorekeeper.models import Match, Tournament
from scorekeeper.validation import parse_id, parse_optional_version, parse_version, require_json_object

logger = logging.getLogger(__name__)

bp = Blueprint('matches', __name__, url_prefix='/api/v1')


def _body() -> dict:
    return require_json_object(request.get_json(silent=True))


def stream_events(subscription, keepalive: float):
    """Server-Sent Events for one subscription until it is closed."""
    hello = {'type': 'connected', 'scope': list(subscription.scope)}
    yield f"data: {json.dumps(hello)}\n\n"

    while not subscription.closed:
        event = subscription.get(timeout=keepalive)
        if event is not None:
            yield f"data: {event.to_json()}\n\n"
        elif not subscription.closed:
            yield ": keepalive\n\n"


def _sse_response(tournament_id: int, match_id: int = None) -> Response:
    hub = current_app.hub
    # One subscription per stream
    subscription = hub.subscribe(tournament_id, match_id)
    response = Response(
        stream_events(subscription, current_app.config['LIVE_KEEPALIVE_SECONDS']),
        mimetype='text/event-stream',
        headers={
            'Cache-Control': 'no-cache',
            'X-Accel-Buffering': 'no'
        }
    )
    response.call_on_close(lambda: hub.unsubscribe(subscription))
    return response


# ==================== Matches ====================

@bp.route('/matches/<match_id>', methods=['GET'])
def get_match(match_id):
    mid = parse_id(match_id, 'match_id')
    match = current_app.storage.get_or_404(Match, mid)
    sm = MatchStateMachine.from_state_string(match.state)
    latest = current_app.matches.latest_live_score(mid)

    data = match.to_dict()
    data['allowed_actions'] = sm.allowed_actions
    data['live_score'] = latest.to_dict() if latest else None
    return jsonify(data)


@bp.route('/matches/<match_id>/begin', methods=['POST'])
@login_required
def begin_match(match_id):
    data = _body()
    match = current_app.coordinator.begin_report(
        parse_id(match_id, 'match_id'),
        current_user,
        parse_optional_version(data)
    )
    return jsonify({'message': 'Match in progress', 'match': match})


@bp.route('/matches/<match_id>/score', methods=['POST'])
@login_required
def submit_score(match_id):
    data = _body()
    if 'score' not in data:
        raise ValidationError("score is required")

    match = current_app.coordinator.submit_score(
        parse_id(match_id, 'match_id'),
        data['score'],
        current_user,
        parse_version(data)
    )
    return jsonify({'message': 'Score reported', 'match': match})


@bp.route('/matches/<match_id>/finalize', methods=['POST'])
@login_required
def finalize_match(match_id):
    data = _body()
    result = current_app.coordinator.finalize(
        parse_id(match_id, 'match_id'),
        current_user,
        parse_optional_version(data),
        data.get('score')
    )
    return jsonify(dict(result.to_dict(), message='Match finalized'))


@bp.route('/matches/<match_id>/report', methods=['POST'])
@login_required
def report_match(match_id):
    """Report the final score and finalize in one step."""
    data = _body()
    if 'score' not in data:
        raise ValidationError("score is required")

    result = current_app.coordinator.report_and_finalize(
        parse_id(match_id, 'match_id'),
        data['score'],
        current_user,
        parse_optional_version(data)
    )
    return jsonify(dict(result.to_dict(), message='Match finalized'))


@bp.route('/matches/<match_id>/dispute', methods=['POST'])
@login_required
def dispute_match(match_id):
    data = _body()
    reason = data.get('reason')
    if reason is not None and not isinstance(reason, str):
        raise ValidationError("reason must be a string")

    match = current_app.coordinator.dispute(
        parse_id(match_id, 'match_id'),
        current_user,
        parse_version(data),
        reason
    )
    return jsonify({'message': 'Match disputed', 'match': match})


@bp.route('/matches/<match_id>/live-score', methods=['POST'])
@login_required
def post_live_score(match_id):
    data = _body()
    entry = current_app.coordinator.post_live_score(
        parse_id(match_id, 'match_id'),
        current_user,
        data.get('game', 1),
        data.get('points_a'),
        data.get('points_b')
    )
    return jsonify(entry), 201


# ==================== Live streams (SSE) ====================

@bp.route('/live/tournaments/<tournament_id>')
def live_tournament(tournament_id):
    """Every event of a tournament."""
    tid = parse_id(tournament_id, 'tournament_id')
    current_app.storage.get_or_404(Tournament, tid)
    return _sse_response(tid)


@bp.route('/live/tournaments/<tournament_id>/matches/<match_id>')
def live_match(tournament_id, match_id):
    """Events of one match only."""
    tid = parse_id(tournament_id, 'tournament_id')
    mid = parse_id(match_id, 'match_id')
    match = current_app.storage.get_or_404(Match, mid)
    if match.tournament_id != tid:
        raise NotFound(f"Match {mid} not found in tournament {tid}")
    return _sse_response(tid, mid)
