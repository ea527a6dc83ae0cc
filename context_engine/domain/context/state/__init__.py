# State = everything needed to resume or audit the current conversation:
# which session is active, when it started, how many turns it has seen and
# whether the engine is still accepting messages.

from .state_manager import StateManager, SessionState, SessionStatus, generate_session_id

__all__ = ["StateManager", "SessionState", "SessionStatus", "generate_session_id"]
