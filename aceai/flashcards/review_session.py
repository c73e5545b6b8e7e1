from __future__ import annotations

from enum import Enum
from typing import Optional, List, Dict, Any

from aceai.utils import get_logger
from .spaced_repetition import SpacedRepetitionEngine, ReviewItem, Grade

LOG = get_logger()


class ReviewMode(str, Enum):
    DUE = 'DUE'
    ALL = 'ALL'


def build_review_queue(engine: SpacedRepetitionEngine, now: Optional[int] = None):
    """Return ``(queue, mode)`` for a review sitting.

    Due items in store order when any are due. Otherwise cram mode: the
    whole deck, least recently scheduled first.
    """
    due = engine.get_due_items(now)
    if due:
        return due, ReviewMode.DUE
    everything = engine.get_all_items()
    everything.sort(key=lambda i: i.next_review_at)
    return everything, ReviewMode.ALL


class ReviewSession:
    """Walks a fixed queue, one graded item at a time.

    The queue is built once; items graded AGAIN are not re-queued in the same
    sitting.
    """

    def __init__(self, engine: SpacedRepetitionEngine, now: Optional[int] = None):
        self.engine = engine
        self.queue, self.mode = build_review_queue(engine, now)
        self.index = 0
        self.finished = not self.queue
        LOG.info('review_session_started', extra={'mode': self.mode.value, 'queue_size': len(self.queue)})

    def current(self) -> Optional[ReviewItem]:
        if self.finished:
            return None
        return self.queue[self.index]

    def rate(self, grade: Any, now: Optional[int] = None) -> Optional[ReviewItem]:
        grade = Grade.parse(grade)
        item = self.current()
        if item is None:
            return None
        updated = self.engine.process_review(item.id, grade, now=now)
        if self.index < len(self.queue) - 1:
            self.index += 1
        else:
            self.finished = True
            LOG.info('review_session_finished', extra={'mode': self.mode.value, 'queue_size': len(self.queue)})
        return updated

    def progress(self) -> Dict[str, Any]:
        return {
            'position': min(self.index + 1, len(self.queue)),
            'total': len(self.queue),
            'mode': self.mode.value,
            'finished': self.finished,
        }

    def remaining(self) -> List[ReviewItem]:
        if self.finished:
            return []
        return self.queue[self.index:]
