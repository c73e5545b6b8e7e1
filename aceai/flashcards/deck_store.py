"""
Durable storage for the review deck.

The whole deck is one JSON array stored under a single key (or file) and is
always read and rewritten in full. A payload that is missing or cannot be
parsed loads as an empty deck rather than raising. A payload that could not
be read is reported separately so callers do not write over it.
"""
from __future__ import annotations

import os
import json
import time
import tempfile
import pathlib
from abc import ABC, abstractmethod
from enum import Enum
from typing import Optional, List, Sequence

import redis
from pydantic import BaseModel, Field, ValidationError
from tenacity import Retrying, stop_after_attempt, wait_exponential, retry_if_exception_type, RetryError

from aceai.utils import get_logger, log_deck_write
from .spaced_repetition import ReviewItem, DeckStoreError

LOG = get_logger()

SRS_STORE_BACKEND = os.getenv('SRS_STORE_BACKEND', 'memory')
SRS_STORAGE_KEY = os.getenv('SRS_STORAGE_KEY', 'aceai_srs_deck')
SRS_DECK_FILE = os.getenv('SRS_DECK_FILE', '.data/srs_deck.json')
SRS_WRITE_RETRY_ATTEMPTS = int(os.getenv('SRS_WRITE_RETRY_ATTEMPTS', '3'))
SRS_WRITE_RETRY_MULTIPLIER = float(os.getenv('SRS_WRITE_RETRY_MULTIPLIER', '0.2'))
SRS_WRITE_RETRY_MAX_WAIT = float(os.getenv('SRS_WRITE_RETRY_MAX_WAIT', '2'))
REDIS_URL = os.getenv('REDIS_URL', None)


class LoadStatus(str, Enum):
    OK = 'ok'
    EMPTY = 'empty'
    CORRUPT = 'corrupt'
    UNAVAILABLE = 'unavailable'


class LoadResult(BaseModel):
    status: LoadStatus
    items: List[ReviewItem] = Field(default_factory=list)


def serialize_deck(items: Sequence[ReviewItem]) -> str:
    return json.dumps([i.model_dump(by_alias=True) for i in items], ensure_ascii=False)


def parse_deck(payload: Optional[str]) -> LoadResult:
    if payload is None or payload == '':
        return LoadResult(status=LoadStatus.EMPTY)
    try:
        raw = json.loads(payload)
    except (TypeError, ValueError) as e:
        LOG.warning('deck_load_corrupt', extra={'reason': 'invalid_json', 'error': str(e)})
        return LoadResult(status=LoadStatus.CORRUPT)
    if raw is None:
        return LoadResult(status=LoadStatus.EMPTY)
    if not isinstance(raw, list):
        LOG.warning('deck_load_corrupt', extra={'reason': 'not_a_list', 'payload_type': type(raw).__name__})
        return LoadResult(status=LoadStatus.CORRUPT)
    try:
        items = [ReviewItem.model_validate(r) for r in raw]
    except ValidationError as e:
        LOG.warning('deck_load_corrupt', extra={'reason': 'invalid_item', 'error_count': e.error_count()})
        return LoadResult(status=LoadStatus.CORRUPT)
    return LoadResult(status=LoadStatus.OK, items=items)


class SchedulingStore(ABC):
    """Persists the full review deck as a single unit.

    Subclasses only move an opaque payload string; parsing, validation and the
    empty-on-corrupt rule live here. A payload that could not be read at all is
    UNAVAILABLE, never EMPTY, so a failed read is not mistaken for a new deck.
    """

    backend = 'abstract'

    @abstractmethod
    def _read_payload(self) -> Optional[str]:
        ...

    @abstractmethod
    def _write_payload(self, payload: str) -> None:
        ...

    def load_result(self) -> LoadResult:
        try:
            payload = self._read_payload()
        except Exception as e:
            LOG.warning('deck_read_failed', extra={'backend': self.backend, 'error': str(e)})
            return LoadResult(status=LoadStatus.UNAVAILABLE)
        return parse_deck(payload)

    def load_all(self) -> List[ReviewItem]:
        return list(self.load_result().items)

    def load_for_update(self) -> List[ReviewItem]:
        """Load the deck ahead of a full rewrite.

        Raises ``DeckStoreError`` when the stored deck could not be read, so the
        caller never saves over a deck it has not seen.
        """
        result = self.load_result()
        if result.status == LoadStatus.UNAVAILABLE:
            raise DeckStoreError(f'Deck could not be read from {self.backend} store')
        return list(result.items)

    def save_all(self, items: Sequence[ReviewItem]) -> None:
        start = time.time()
        payload = serialize_deck(items)
        try:
            self._write_payload(payload)
        except DeckStoreError:
            raise
        except Exception as e:
            LOG.exception('deck_write_failed', exc_info=True, extra={'backend': self.backend})
            raise DeckStoreError(str(e)) from e
        duration_ms = int((time.time() - start) * 1000)
        log_deck_write(self.backend, len(items), len(payload), duration_ms)


class InMemoryDeckStore(SchedulingStore):
    backend = 'memory'

    def __init__(self, payload: Optional[str] = None):
        self._payload = payload

    def _read_payload(self) -> Optional[str]:
        return self._payload

    def _write_payload(self, payload: str) -> None:
        self._payload = payload


class JsonFileDeckStore(SchedulingStore):
    backend = 'file'

    def __init__(self, path: Optional[str] = None):
        self.path = pathlib.Path(path or SRS_DECK_FILE)

    def _read_payload(self) -> Optional[str]:
        if not self.path.exists():
            return None
        return self.path.read_text(encoding='utf-8')

    def _write_payload(self, payload: str) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        # write next to the target so os.replace stays on one filesystem
        fd, tmp_name = tempfile.mkstemp(prefix='.deck-', suffix='.tmp', dir=str(self.path.parent))
        try:
            with os.fdopen(fd, 'w', encoding='utf-8') as fh:
                fh.write(payload)
            os.replace(tmp_name, self.path)
        except Exception:
            if os.path.exists(tmp_name):
                os.remove(tmp_name)
            raise


class RedisDeckStore(SchedulingStore):
    """Deck stored under one Redis key.

    Falls back to an in-process payload when Redis cannot be reached at start
    up. Reads and writes retry connection and timeout errors before giving up.
    """

    backend = 'redis'

    def __init__(self, client=None, key: Optional[str] = None, retry_attempts: int = SRS_WRITE_RETRY_ATTEMPTS,
                 retry_multiplier: float = SRS_WRITE_RETRY_MULTIPLIER, retry_max_wait: float = SRS_WRITE_RETRY_MAX_WAIT):
        self.key = key or SRS_STORAGE_KEY
        self.retry_attempts = retry_attempts
        self.retry_multiplier = retry_multiplier
        self.retry_max_wait = retry_max_wait
        self._fallback = InMemoryDeckStore()
        self._client = None
        try:
            if client is not None:
                self._client = client
            elif REDIS_URL:
                self._client = redis.from_url(REDIS_URL, decode_responses=True)
            else:
                self._client = redis.Redis(host=os.getenv('REDIS_HOST', 'redis'), port=int(os.getenv('REDIS_PORT', '6379')), password=os.getenv('REDIS_PASSWORD') or None, decode_responses=True)
            self._client.ping()
            LOG.info('deck_store_redis_connected', extra={'key': self.key})
        except Exception as e:
            LOG.warning('Redis not available for deck store, using in-memory deck', extra={'error': str(e)})
            self._client = None

    @property
    def using_redis(self) -> bool:
        return self._client is not None

    def _read_payload(self) -> Optional[str]:
        if not self._client:
            return self._fallback._read_payload()
        raw = self._with_retries('read', self._client.get, self.key)
        if isinstance(raw, bytes):
            raw = raw.decode('utf-8')
        return raw

    def _write_payload(self, payload: str) -> None:
        if not self._client:
            self._fallback._write_payload(payload)
            return
        self._with_retries('write', self._client.set, self.key, payload)

    def _with_retries(self, op: str, fn, *args):
        retrying = Retrying(
            stop=stop_after_attempt(self.retry_attempts),
            wait=wait_exponential(multiplier=self.retry_multiplier, max=self.retry_max_wait),
            retry=retry_if_exception_type((redis.exceptions.ConnectionError, redis.exceptions.TimeoutError, ConnectionError, TimeoutError)),
        )
        try:
            for attempt in retrying:
                with attempt:
                    return fn(*args)
        except RetryError as e:
            last = e.last_attempt.exception()
            LOG.error(f'deck_{op}_retries_exhausted', extra={'key': self.key, 'attempts': self.retry_attempts, 'error': str(last)})
            raise DeckStoreError(f'Redis {op} failed after {self.retry_attempts} attempts: {last}') from last


def get_deck_store(backend: Optional[str] = None) -> SchedulingStore:
    backend = (backend or SRS_STORE_BACKEND or 'memory').lower()
    if backend == 'memory':
        return InMemoryDeckStore()
    if backend == 'file':
        return JsonFileDeckStore()
    if backend == 'redis':
        return RedisDeckStore()
    raise DeckStoreError(f'Unknown deck store backend: {backend}')
