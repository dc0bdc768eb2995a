import logging
from typing import List

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from shared.errors import AlreadyRegistered, NotAuthorized, TournamentFull
from shared.events import EventType, registration_event
from .models import Registration, Tournament
from .storage import Storage

logger = logging.getLogger(__name__)


class RegistrationLedger:
    """
    Tournament sign-ups.

    Capacity is arbitrated by a conditional increment of
    ``Tournament.registration_count`` that runs in the same transaction as
    the registration insert, so racers for the last slot cannot both win.
    """

    def __init__(self, storage: Storage, hub=None):
        self.storage = storage
        self.hub = hub

    def register(self, tournament_id: int, player_id: int, txn_id: str = None) -> dict:
        """Register a player; returns the registration as a dict."""
        with self.storage.transaction() as session:
            self.storage.get_or_404(Tournament, tournament_id)

            existing = Registration.query.filter_by(
                tournament_id=tournament_id,
                player_id=player_id
            ).first()
            if existing:
                raise AlreadyRegistered(
                    f"Player {player_id} is already registered for tournament {tournament_id}"
                )

            result = session.execute(
                update(Tournament)
                .where(
                    Tournament.id == tournament_id,
                    Tournament.registration_count < Tournament.capacity
                )
                .values(registration_count=Tournament.registration_count + 1)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                raise TournamentFull(f"Tournament {tournament_id} is full")

            registration = Registration(
                tournament_id=tournament_id,
                player_id=player_id,
                txn_id=txn_id
            )
            session.add(registration)
            try:
                session.flush()
            except IntegrityError as e:
                raise AlreadyRegistered(
                    f"Player {player_id} is already registered for tournament {tournament_id}"
                ) from e
            snapshot = registration.to_dict()

        logger.info(f"Player {player_id} registered for tournament {tournament_id}")
        self._publish(EventType.PLAYER_REGISTERED, snapshot)
        return snapshot

    def unregister(self, registration_id: int, actor) -> dict:
        """Remove a registration owned by ``actor`` and free its slot."""
        with self.storage.transaction() as session:
            registration = self.storage.get_or_404(Registration, registration_id, lock=True)
            if registration.player_id != actor.player_id:
                raise NotAuthorized("Only the registered player can unregister")

            snapshot = registration.to_dict()
            session.delete(registration)
            session.execute(
                update(Tournament)
                .where(
                    Tournament.id == snapshot['tournament_id'],
                    Tournament.registration_count > 0
                )
                .values(registration_count=Tournament.registration_count - 1)
                .execution_options(synchronize_session=False)
            )
            session.flush()

        logger.info(
            f"Player {snapshot['player_id']} unregistered from tournament {snapshot['tournament_id']}"
        )
        self._publish(EventType.PLAYER_UNREGISTERED, snapshot)
        return snapshot

    def registrations_for_player(self, player_id: int) -> List[dict]:
        rows = (
            Registration.query
            .filter_by(player_id=player_id)
            .order_by(Registration.created_at.desc(), Registration.id.desc())
            .all()
        )
        return [
            dict(r.to_dict(), tournament=r.tournament.to_dict() if r.tournament else None)
            for r in rows
        ]

    def registrations_for_tournament(self, tournament_id: int, actor) -> List[dict]:
        """All registrations of a tournament; only its host may list them."""
        tournament = self.storage.get_or_404(Tournament, tournament_id)
        if tournament.host_id != actor.player_id:
            raise NotAuthorized("Only the tournament host can list registrations")

        rows = (
            Registration.query
            .filter_by(tournament_id=tournament_id)
            .order_by(Registration.created_at, Registration.id)
            .all()
        )
        return [r.to_dict() for r in rows]

    def _publish(self, event_type: EventType, registration: dict):
        if self.hub is None:
            return
        try:
            self.hub.publish(registration_event(event_type, registration))
        except Exception:
            logger.exception(f"Failed to publish {event_type.value} event")
