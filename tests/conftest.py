import os
import json
import pytest
from pathlib import Path

from dotenv import load_dotenv

# load test env first
env_path = Path(__file__).resolve().parents[1] / '.env.test'
if env_path.exists():
    load_dotenv(env_path)

os.environ.setdefault('TESTING', '1')
os.environ.setdefault('SRS_STORE_BACKEND', 'memory')

from aceai.flashcards import SpacedRepetitionEngine, InMemoryDeckStore, DAY_MS

T0 = 1_700_000_000_000


class FakeClock:
    def __init__(self, now: int = T0):
        self.now = now

    def __call__(self) -> int:
        return self.now

    def advance(self, days: float = 0, ms: int = 0):
        self.now += int(days * DAY_MS) + ms
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def memory_store():
    return InMemoryDeckStore()


@pytest.fixture
def engine(memory_store, clock):
    return SpacedRepetitionEngine(memory_store, clock=clock)


@pytest.fixture
def legacy_deck_payload():
    # shape written by the browser app: no explanation on the first card
    return json.dumps([
        {'id': '1699999999000abcde', 'question': 'What is ATP?', 'answer': 'Energy currency of the cell',
         'nextReviewDate': T0 - DAY_MS, 'interval': 6, 'easeFactor': 2.36, 'repetitions': 2, 'type': 'GENERAL'},
        {'id': '1699999999001fghij', 'question': 'Define osmosis', 'answer': 'Diffusion of water across a membrane',
         'explanation': 'Through a semi-permeable membrane', 'nextReviewDate': T0 + 3 * DAY_MS,
         'interval': 15, 'easeFactor': 2.6, 'repetitions': 3, 'type': 'OPEN_ENDED'},
    ])


@pytest.fixture
def mock_redis_client(monkeypatch):
    from tests.fixtures.mock_redis import MockRedisClient
    client = MockRedisClient()
    monkeypatch.setattr('redis.Redis', lambda *a, **k: client)
    return client
