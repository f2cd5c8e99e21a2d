# State = everything needed to resume or audit a prompt run at a moment in time:
#
# Run status (pending, running, completed, needs_review, failed)
#
# Current iteration and refinement counters
#
# Last run id, and the error of a failed run

from .state_manager import StateManager

__all__ = ["StateManager"]
