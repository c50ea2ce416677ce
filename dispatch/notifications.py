#Purpose: Notification dispatcher boundary.
#Everything that tells a person about a match or an assignment goes through
#dispatch_notification(), which never raises: delivery is fire-and-forget and
#a failed push is logged, not propagated.

from __future__ import annotations

import logging
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

logger = logging.getLogger(__name__)


class NotificationKind(str, Enum):
    DONATION_OFFER = "donation_offer"
    DONATION_ACCEPTED = "donation_accepted"
    TASK_ASSIGNED = "task_assigned"
    TASK_STATUS = "task_status"


class LoggingNotifier:
    """
    Default notifier: records what would have been pushed.
    Swap for a real push service with the same notify() signature.
    """
    def __init__(self):
        self.sent: List[Tuple[str, NotificationKind, Dict[str, Any]]] = []

    def notify(self, user_id: str, kind: NotificationKind, payload: Dict[str, Any]) -> None:
        self.sent.append((user_id, kind, payload))
        logger.info("Notify %s [%s]: %s", user_id, kind.value, payload)


def dispatch_notification(
    notifier,
    user_id: Optional[str],
    kind: NotificationKind,
    payload: Dict[str, Any],
) -> bool:
    """
    Returns True when the notifier accepted the message.
    """
    if notifier is None or not user_id:
        return False
    try:
        notifier.notify(user_id, kind, payload)
        return True
    except Exception:
        logger.exception("Failed to send %s notification to %s", kind.value, user_id)
        return False
