from .donation_state import DonationStateException, can_transition_donation, transition_donation
from .task_state import TaskStateException, can_transition_task, transition_task

__all__ = [
    "DonationStateException",
    "can_transition_donation",
    "transition_donation",
    "TaskStateException",
    "can_transition_task",
    "transition_task",
]
