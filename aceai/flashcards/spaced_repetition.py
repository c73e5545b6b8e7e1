from __future__ import annotations

import math
import random
import string
import time
from enum import Enum
from fractions import Fraction
from typing import Optional, List, Dict, Any, Iterable, Callable

from pydantic import BaseModel, ConfigDict, Field

from aceai.utils import get_logger, log_review

LOG = get_logger()

DAY_MS = 24 * 60 * 60 * 1000
DEFAULT_EASE_FACTOR = 2.5
MIN_EASE_FACTOR = 1.3


class DeckError(Exception):
    pass


class DeckStoreError(DeckError):
    pass


class InvalidGradeError(DeckError, ValueError):
    pass


class Grade(str, Enum):
    AGAIN = 'AGAIN'
    HARD = 'HARD'
    GOOD = 'GOOD'
    EASY = 'EASY'

    @property
    def quality(self) -> int:
        return _QUALITY[self]

    @classmethod
    def parse(cls, value: Any) -> 'Grade':
        if isinstance(value, Grade):
            return value
        if isinstance(value, str):
            key = value.strip().upper()
            if key in cls.__members__:
                return cls[key]
        raise InvalidGradeError(f'Unknown review grade: {value!r}')


# SM-2 quality on the 0-5 scale; 1 and 2 are never produced
_QUALITY = {
    Grade.AGAIN: 0,
    Grade.HARD: 3,
    Grade.GOOD: 4,
    Grade.EASY: 5,
}


class ItemCategory(str, Enum):
    MULTIPLE_CHOICE = 'MULTIPLE_CHOICE'
    FILL_IN_THE_BLANK = 'FILL_IN_THE_BLANK'
    OPEN_ENDED = 'OPEN_ENDED'
    GENERAL = 'GENERAL'


class ReviewItem(BaseModel):
    """One memorizable fact plus its scheduling state.

    Field aliases match the persisted deck payload, so
    ``model_dump(by_alias=True)`` is the storage representation.
    """

    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(..., min_length=1)
    question: str
    answer: str
    explanation: Optional[str] = ''
    category: str = Field(ItemCategory.GENERAL.value, alias='type')
    next_review_at: int = Field(..., alias='nextReviewDate')
    interval_days: int = Field(0, ge=0, alias='interval')
    ease_factor: float = Field(DEFAULT_EASE_FACTOR, ge=MIN_EASE_FACTOR, alias='easeFactor')
    repetitions: int = Field(0, ge=0)

    def is_due(self, now: int) -> bool:
        return self.next_review_at <= now


def now_ms() -> int:
    return int(time.time() * 1000)


def _scaled_interval(interval: int, ease_factor: float) -> int:
    # half-up rounding; exact arithmetic once the float product overflows
    try:
        product = interval * ease_factor
    except OverflowError:
        product = math.inf
    if math.isfinite(product):
        return int(math.floor(product + 0.5))
    return math.floor(Fraction(interval) * Fraction(ease_factor) + Fraction(1, 2))


def _category_value(category: Any) -> str:
    if isinstance(category, Enum):
        return str(category.value)
    if category is None or category == '':
        return ItemCategory.GENERAL.value
    return str(category)


def new_item_id(now: int, taken: Optional[Iterable[str]] = None) -> str:
    taken = set(taken or ())
    alphabet = string.ascii_lowercase + string.digits
    while True:
        candidate = f"{now}{''.join(random.choices(alphabet, k=5))}"
        if candidate not in taken:
            return candidate


def apply_grade(item: ReviewItem, grade: Grade, now: int) -> ReviewItem:
    """Return ``item`` rescheduled after a review graded ``grade`` at ``now``.

    Simplified SM-2. The interval is computed from the ease factor as it was
    before this review; the ease factor is then updated and floored at 1.3.
    AGAIN always resurfaces the item one day later, whatever the interval.
    """
    grade = Grade.parse(grade)
    q = grade.quality
    repetitions = item.repetitions
    interval = item.interval_days

    if q < 3:
        repetitions = 0
        interval = 1
    else:
        if repetitions == 0:
            interval = 1
        elif repetitions == 1:
            interval = 6
        else:
            interval = _scaled_interval(interval, item.ease_factor)
        repetitions += 1

    ease = item.ease_factor + (0.1 - (5 - q) * (0.08 + (5 - q) * 0.02))
    ease = max(ease, MIN_EASE_FACTOR)

    if grade is Grade.AGAIN:
        next_review_at = now + DAY_MS
    else:
        next_review_at = now + interval * DAY_MS

    return item.model_copy(update={
        'repetitions': repetitions,
        'interval_days': interval,
        'ease_factor': ease,
        'next_review_at': next_review_at,
    })


class SpacedRepetitionEngine:
    """Scheduling decisions over the deck held by a ``SchedulingStore``.

    Every operation does one load -> compute -> save cycle against the store.
    There is no isolation between concurrent callers: the last full write wins.
    """

    def __init__(self, store=None, clock: Optional[Callable[[], int]] = None):
        if store is None:
            from .deck_store import get_deck_store
            store = get_deck_store()
        self.store = store
        self.clock = clock or now_ms

    def _now(self, now: Optional[int]) -> int:
        return int(self.clock() if now is None else now)

    def get_all_items(self) -> List[ReviewItem]:
        return self.store.load_all()

    def get_item(self, item_id: str) -> Optional[ReviewItem]:
        for item in self.store.load_all():
            if item.id == item_id:
                return item
        return None

    def _new_item(self, question: str, answer: str, explanation: Optional[str], category: Any, now: int, taken: Iterable[str]) -> ReviewItem:
        return ReviewItem(
            id=new_item_id(now, taken),
            question=question,
            answer=answer,
            explanation=explanation if explanation is not None else '',
            category=_category_value(category),
            next_review_at=now,
            interval_days=0,
            ease_factor=DEFAULT_EASE_FACTOR,
            repetitions=0,
        )

    def add_item(self, question: str, answer: str, explanation: Optional[str] = '', category: Any = ItemCategory.GENERAL, now: Optional[int] = None) -> bool:
        now = self._now(now)
        deck = self.store.load_for_update()
        # exact match only; no normalisation of whitespace or case
        if any(i.question == question for i in deck):
            LOG.info('srs_item_duplicate', extra={'deck_size': len(deck)})
            return False
        item = self._new_item(question, answer, explanation, category, now, (i.id for i in deck))
        deck.append(item)
        self.store.save_all(deck)
        LOG.info('srs_item_added', extra={'item_id': item.id, 'category': item.category, 'deck_size': len(deck)})
        return True

    def add_flashcard(self, term: str, definition: str, now: Optional[int] = None) -> bool:
        return self.add_item(term, definition, '', ItemCategory.GENERAL, now=now)

    def add_items(self, entries: Iterable[Dict[str, Any]], now: Optional[int] = None) -> int:
        """Add several items with one load and at most one save.

        Entries are mappings with ``question`` and ``answer`` and optional
        ``explanation`` and ``category``. Duplicates, including repeats inside
        ``entries``, are skipped. Returns the number of items added.
        """
        now = self._now(now)
        deck = self.store.load_for_update()
        questions = {i.question for i in deck}
        ids = {i.id for i in deck}
        added = 0
        for entry in entries:
            question = entry.get('question')
            answer = entry.get('answer')
            if question is None or answer is None:
                LOG.warning('srs_item_incomplete_skipped', extra={'keys': sorted(entry.keys())})
                continue
            if question in questions:
                continue
            item = self._new_item(question, answer, entry.get('explanation', ''), entry.get('category'), now, ids)
            deck.append(item)
            questions.add(question)
            ids.add(item.id)
            added += 1
        if added:
            self.store.save_all(deck)
        LOG.info('srs_items_added', extra={'added': added, 'deck_size': len(deck)})
        return added

    def get_due_items(self, now: Optional[int] = None) -> List[ReviewItem]:
        now = self._now(now)
        return [i for i in self.store.load_all() if i.is_due(now)]

    def get_due_count(self, now: Optional[int] = None) -> int:
        now = self._now(now)
        return sum(1 for i in self.store.load_all() if i.is_due(now))

    def get_deck_stats(self, now: Optional[int] = None) -> Dict[str, int]:
        now = self._now(now)
        deck = self.store.load_all()
        return {
            'due_count': sum(1 for i in deck if i.is_due(now)),
            'total_count': len(deck),
        }

    def process_review(self, item_id: str, grade: Any, now: Optional[int] = None) -> Optional[ReviewItem]:
        """Apply a recall grade to one item and persist the deck.

        Raises ``InvalidGradeError`` for anything but the four grades. An
        unknown ``item_id`` is a no-op and returns None. Raises ``DeckStoreError``
        when the deck cannot be read or written.
        """
        grade = Grade.parse(grade)
        now = self._now(now)
        deck = self.store.load_for_update()
        index = next((n for n, i in enumerate(deck) if i.id == item_id), -1)
        if index == -1:
            LOG.warning('srs_review_unknown_item', extra={'item_id': item_id, 'grade': grade.value})
            return None

        updated = apply_grade(deck[index], grade, now)
        deck[index] = updated
        self.store.save_all(deck)
        log_review(updated.id, grade.value, updated.repetitions, updated.interval_days, updated.ease_factor, updated.next_review_at)
        return updated
