#Expose the assignment pipeline pieces:
#Notification boundary (fire-and-forget)
#Retry scheduler (in-process timers)
#Escalation controller (the courier assignment state machine)
#Dispatcher lives in dispatch.dispatcher; it imports matching, which imports
#dispatch.notifications, so it is not re-exported here.

from .notifications import LoggingNotifier, NotificationKind, dispatch_notification
from .scheduler import RetryScheduler
from .escalation import AssignmentAttempt, AssignmentError, AssignmentEscalationController, AssignmentState

__all__ = [
    "LoggingNotifier",
    "NotificationKind",
    "dispatch_notification",
    "RetryScheduler",
    "AssignmentAttempt",
    "AssignmentError",
    "AssignmentEscalationController",
    "AssignmentState",
]
