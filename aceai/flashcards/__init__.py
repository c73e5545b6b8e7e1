"""
Review deck with spaced repetition (simplified SM-2).
Stores promoted flashcards and quiz items and schedules when each is due.
"""

from .spaced_repetition import (
	SpacedRepetitionEngine,
	ReviewItem,
	Grade,
	ItemCategory,
	apply_grade,
	DAY_MS,
	DeckError,
	DeckStoreError,
	InvalidGradeError,
)
from .deck_store import (
	SchedulingStore,
	InMemoryDeckStore,
	JsonFileDeckStore,
	RedisDeckStore,
	LoadResult,
	LoadStatus,
	get_deck_store,
)
from .review_session import ReviewSession, ReviewMode, build_review_queue

__all__ = [
	'SpacedRepetitionEngine',
	'ReviewItem',
	'Grade',
	'ItemCategory',
	'apply_grade',
	'DAY_MS',
	'DeckError',
	'DeckStoreError',
	'InvalidGradeError',
	'SchedulingStore',
	'InMemoryDeckStore',
	'JsonFileDeckStore',
	'RedisDeckStore',
	'LoadResult',
	'LoadStatus',
	'get_deck_store',
	'ReviewSession',
	'ReviewMode',
	'build_review_queue',
]
