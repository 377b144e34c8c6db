"""
Study sessions: the review queue state machine and where running sessions are kept.
"""

from .engine import (
	StudyEngine,
	StudyState,
	SessionStats,
	StudySessionError,
	EmptyQueueError,
	InvalidTransitionError,
	format_elapsed,
)
from .session_store import StudySessionStore, StudySessionNotFoundError

__all__ = [
	'StudyEngine',
	'StudyState',
	'SessionStats',
	'StudySessionError',
	'EmptyQueueError',
	'InvalidTransitionError',
	'format_elapsed',
	'StudySessionStore',
	'StudySessionNotFoundError',
]
