"""
Request identity.

Authentication itself happens upstream; the gateway forwards the verified
account and player ids in ``X-User-Id`` / ``X-Player-Id``. Flask-Login's
request loader turns them into the ``Actor`` the services authorize against.
"""
from flask import jsonify
from flask_login import LoginManager, UserMixin

from shared.errors import DomainError
from .validation import MAX_INT

login_manager = LoginManager()


class Unauthenticated(DomainError):
    kind = "unauthenticated"
    status_code = 401


class Actor(UserMixin):

    def __init__(self, user_id: int, player_id: int):
        self.user_id = user_id
        self.player_id = player_id

    def get_id(self):
        return str(self.user_id)

    def __repr__(self):
        return f"<Actor user={self.user_id} player={self.player_id}>"


def _header_id(request, name: str):
    value = request.headers.get(name, '').strip()
    if not (value.isascii() and value.isdigit()):
        return None
    parsed = int(value)
    if not 0 < parsed <= MAX_INT:
        return None
    return parsed


@login_manager.request_loader
def load_actor_from_request(request):
    user_id = _header_id(request, 'X-User-Id')
    player_id = _header_id(request, 'X-Player-Id')
    if user_id is None or player_id is None:
        return None
    return Actor(user_id, player_id)


@login_manager.unauthorized_handler
def unauthorized():
    error = Unauthenticated("X-User-Id and X-Player-Id headers are required")
    return jsonify({'error': error.to_dict()}), error.status_code
