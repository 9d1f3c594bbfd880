# pmcoach/services/session_registry.py
# In-process registry of live interview controllers, one per user.
import logging
from typing import Callable, Dict

from pmcoach.exceptions import SessionAlreadyActive, SessionNotFound
from pmcoach.services.session_controller import SessionController, SessionState

logger = logging.getLogger(__name__)

# a user may not replace an interview in these states
_IN_FLIGHT = frozenset({SessionState.ACTIVE, SessionState.FINALIZING})


class SessionRegistry:

    def __init__(self, controller_factory: Callable[[str], SessionController]):
        self._factory = controller_factory
        self._by_user: Dict[str, SessionController] = {}

    def open(self, user_id: str) -> SessionController:
        existing = self._by_user.get(user_id)
        if existing is not None:
            if existing.state in _IN_FLIGHT:
                raise SessionAlreadyActive(
                    f"user {user_id} already has a session {existing.state.value}"
                )
            existing.close()

        controller = self._factory(user_id)
        self._by_user[user_id] = controller
        return controller

    def get(self, user_id: str) -> SessionController:
        controller = self._by_user.get(user_id)
        if controller is None:
            raise SessionNotFound(f"no interview in progress for user {user_id}")
        return controller

    def abandon(self, user_id: str) -> SessionController:
        # stays registered as Aborted so status reads still work; open() replaces it
        controller = self.get(user_id)
        controller.abandon()
        return controller

    def discard(self, user_id: str) -> None:
        controller = self._by_user.pop(user_id, None)
        if controller is not None:
            controller.close()

    def shutdown(self) -> None:
        for user_id in list(self._by_user):
            self.discard(user_id)
        logger.info("[SESSION] registry shut down")
