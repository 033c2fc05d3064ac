from __future__ import annotations

import logging
import threading
import time
import uuid
from dataclasses import dataclass
from typing import Callable, Dict

from .errors import AuthorizationError, ExpiredError, NotFoundError
from .models import AiAction

logger = logging.getLogger("partsbot.pending_actions")


@dataclass
class PendingAction:
    id: str
    user_id: str
    action: AiAction
    expires_at: float


class PendingActionStore:
    """Single-use, expiring confirmation tokens that gate cart mutations."""

    def __init__(self, ttl_sec: float = 600.0, clock: Callable[[], float] = time.time) -> None:
        self._ttl_sec = ttl_sec
        self._clock = clock
        self._lock = threading.Lock()
        self._actions: Dict[str, PendingAction] = {}

    def __len__(self) -> int:
        with self._lock:
            return len(self._actions)

    def create(self, user_id: str, action: AiAction) -> AiAction:
        """Purpose: Register an action awaiting the user's confirmation.
        Inputs/Outputs: Inputs are the owner id and the proposed action; output is a
            copy of the action carrying its confirmationId.
        Side Effects / State: Sweeps expired records, then stores the new one.
        Dependencies: Uses uuid4 for an unguessable id.
        Failure Modes: None.
        If Removed: Cart actions could only run without confirmation.
        Testing Notes: Two creates never share an id.
        """
        # Sweep before insert so the table only grows with live actions.
        now = self._clock()
        action_id = uuid.uuid4().hex
        stored = action.model_copy(update={"confirmationId": action_id})
        with self._lock:
            expired = [key for key, pending in self._actions.items() if pending.expires_at <= now]
            for key in expired:
                del self._actions[key]
            self._actions[action_id] = PendingAction(
                id=action_id,
                user_id=user_id,
                action=stored,
                expires_at=now + self._ttl_sec,
            )
        logger.info("pending action created user=%s type=%s swept=%s", user_id, stored.type, len(expired))
        return stored

    def confirm(self, action_id: str, user_id: str) -> AiAction:
        """Purpose: Redeem a pending action at most once.
        Inputs/Outputs: Inputs are the confirmation id and the requesting user; output
            is the stored action.
        Side Effects / State: Deletes the record on success and on expiry.
        Dependencies: None beyond the in-memory table.
        Failure Modes: NotFoundError when absent or already used; AuthorizationError for
            another user's action (checked before expiry); ExpiredError when
            now >= expires_at.
        If Removed: Confirmation ids could be replayed or redeemed by other users.
        Testing Notes: A second confirm of the same id raises NotFoundError.
        """
        # Ownership is checked before expiry; the record is removed before returning.
        now = self._clock()
        with self._lock:
            pending = self._actions.get(action_id)
            if pending is None:
                raise NotFoundError()
            if pending.user_id != user_id:
                logger.warning("pending action owner mismatch user=%s", user_id)
                raise AuthorizationError()
            del self._actions[action_id]
            if pending.expires_at <= now:
                raise ExpiredError()
        return pending.action
