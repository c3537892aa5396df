"""
Deduplication gate between rule evaluation and persistence.
"""

import logging
from typing import Optional

from finnotify.database.models import Notification
from finnotify.database.repository import NotificationRepository
from .types import CandidateNotification

logger = logging.getLogger(__name__)


class DeduplicationGate:
    """Suppresses candidates that already fired in their window.

    The existence check and the insert are two separate store calls, so two
    overlapping passes could both insert. Callers serialize passes per user.
    """

    def __init__(self, notification_repo: NotificationRepository):
        self.notification_repo = notification_repo

    async def should_emit(self, candidate: CandidateNotification) -> bool:
        """Check whether no matching notification exists in the window."""
        exists = await self.notification_repo.exists_in_window(
            user_id=candidate.user_id,
            notification_type=candidate.type,
            subtype=candidate.subtype,
            entity_key=candidate.entity_key,
            since=candidate.window.start,
        )
        return not exists

    async def emit(self, candidate: CandidateNotification) -> Optional[Notification]:
        """
        Persist a candidate unless it is a duplicate.

        Args:
            candidate: Candidate produced by a rule

        Returns:
            The stored Notification, or None if suppressed
        """
        if not await self.should_emit(candidate):
            logger.debug(
                f"Suppressed duplicate {candidate.type.value}/{candidate.subtype} "
                f"for {candidate.entity_key or 'user'}"
            )
            return None

        notification = await self.notification_repo.create(candidate)
        logger.info(
            f"Created {candidate.type.value}/{candidate.subtype} notification: "
            f"{candidate.title}"
        )
        return notification
