import os
import time
from datetime import datetime
from typing import Optional, List

from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from aceai.flashcards import (
    SpacedRepetitionEngine,
    ReviewItem,
    ReviewSession,
    InvalidGradeError,
    DeckStoreError,
    get_deck_store,
)
from aceai.utils import get_logger, set_request_context, log_request

LOG = get_logger()


class Settings(BaseSettings):
    HOST: str = '0.0.0.0'
    PORT: int = 8000
    ENVIRONMENT: str = 'development'
    LOG_LEVEL: str = 'INFO'
    CORS_ORIGIN: str = '*'
    SRS_STORE_BACKEND: str = 'memory'

    model_config = SettingsConfigDict(env_file='.env', extra='ignore')


settings = Settings()

app = FastAPI(title='AceAI Review Deck Service', version='1.0.0', description='Spaced-repetition scheduling for the AceAI study app')

origins = [o.strip() for o in settings.CORS_ORIGIN.split(',') if o.strip()]
app.add_middleware(
    CORSMiddleware,
    allow_origins=origins or ["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

engine = SpacedRepetitionEngine(get_deck_store(settings.SRS_STORE_BACKEND))


def get_engine() -> SpacedRepetitionEngine:
    return engine


@app.middleware('http')
async def add_request_id_and_logging(request: Request, call_next):
    # prefer incoming X-Request-ID header for cross-service tracing
    request_id = request.headers.get('x-request-id') or os.urandom(8).hex()
    request.state.request_id = request_id
    set_request_context(request_id)
    start = time.time()
    LOG.info('http_request_start', extra={'method': request.method, 'path': request.url.path, 'request_id': request_id})
    try:
        response: Response = await call_next(request)
    except Exception:
        LOG.exception('Unhandled exception in request', exc_info=True)
        body = {'success': False, 'error': {'message': 'Internal server error', 'request_id': request_id}}
        return JSONResponse(status_code=500, content=body, headers={'X-Request-ID': request_id})
    duration = int((time.time() - start) * 1000)
    log_request(request_id, request.method, request.url.path, response.status_code, duration, request.client.host if request.client else None)
    response.headers['X-Request-ID'] = request_id
    return response


def _request_id(fastapi_request: Request) -> str:
    return getattr(fastapi_request.state, 'request_id', None) or os.urandom(8).hex()


@app.get('/health')
async def health():
    return {'status': 'ok', 'timestamp': datetime.utcnow().isoformat() + 'Z', 'service': 'srs', 'store': get_engine().store.backend}


class AddItemRequest(BaseModel):
    question: str = Field(..., min_length=1, description='Prompt shown on the front of the card')
    answer: str = Field(..., description='Answer revealed on demand')
    explanation: Optional[str] = Field('', description='Optional supporting explanation')
    category: str = Field('GENERAL', description='Origin tag, e.g. MULTIPLE_CHOICE or GENERAL')


class AddItemResponse(BaseModel):
    success: bool
    added: bool
    request_id: str


class PromoteItemsRequest(BaseModel):
    items: List[AddItemRequest] = Field(..., description='Flashcards or quiz questions to add to the deck')


class PromoteItemsResponse(BaseModel):
    success: bool
    added: int
    skipped: int
    request_id: str


class ItemListResponse(BaseModel):
    success: bool
    items: List[ReviewItem]
    count: int
    request_id: str


class DeckStatsResponse(BaseModel):
    success: bool
    due_count: int
    total_count: int
    request_id: str


class ReviewRequest(BaseModel):
    grade: str = Field(..., description='AGAIN, HARD, GOOD or EASY')


class ReviewResponse(BaseModel):
    success: bool
    item: ReviewItem
    request_id: str


class SessionResponse(BaseModel):
    success: bool
    mode: str
    items: List[ReviewItem]
    count: int
    request_id: str


def _store_error(e: Exception, request_id: str) -> JSONResponse:
    LOG.exception('deck_store_error', exc_info=True)
    return JSONResponse(status_code=503, content={'success': False, 'error': 'Deck storage unavailable', 'details': str(e), 'request_id': request_id})


@app.get('/srs/items', response_model=ItemListResponse)
async def list_items(fastapi_request: Request):
    request_id = _request_id(fastapi_request)
    items = get_engine().get_all_items()
    return ItemListResponse(success=True, items=items, count=len(items), request_id=request_id)


@app.post('/srs/items', response_model=AddItemResponse, status_code=201)
async def add_item(req: AddItemRequest, fastapi_request: Request, now: Optional[int] = None):
    request_id = _request_id(fastapi_request)
    try:
        added = get_engine().add_item(req.question, req.answer, req.explanation, req.category, now=now)
    except DeckStoreError as e:
        return _store_error(e, request_id)
    if not added:
        return JSONResponse(status_code=409, content={'success': False, 'added': False, 'error': 'Already in review deck', 'request_id': request_id})
    return AddItemResponse(success=True, added=True, request_id=request_id)


@app.post('/srs/items/flashcards', response_model=PromoteItemsResponse)
async def promote_items(req: PromoteItemsRequest, fastapi_request: Request, now: Optional[int] = None):
    request_id = _request_id(fastapi_request)
    try:
        added = get_engine().add_items([i.model_dump() for i in req.items], now=now)
    except DeckStoreError as e:
        return _store_error(e, request_id)
    LOG.info('srs_promote_complete', extra={'request_id': request_id, 'added': added, 'requested': len(req.items)})
    return PromoteItemsResponse(success=True, added=added, skipped=len(req.items) - added, request_id=request_id)


@app.get('/srs/due', response_model=ItemListResponse)
async def due_items(fastapi_request: Request, now: Optional[int] = None):
    request_id = _request_id(fastapi_request)
    items = get_engine().get_due_items(now)
    return ItemListResponse(success=True, items=items, count=len(items), request_id=request_id)


@app.get('/srs/stats', response_model=DeckStatsResponse)
async def deck_stats(fastapi_request: Request, now: Optional[int] = None):
    request_id = _request_id(fastapi_request)
    stats = get_engine().get_deck_stats(now)
    return DeckStatsResponse(success=True, request_id=request_id, **stats)


@app.post('/srs/items/{item_id}/review', response_model=ReviewResponse)
async def review_item(item_id: str, req: ReviewRequest, fastapi_request: Request, now: Optional[int] = None):
    request_id = _request_id(fastapi_request)
    try:
        updated = get_engine().process_review(item_id, req.grade, now=now)
    except InvalidGradeError as e:
        return JSONResponse(status_code=422, content={'success': False, 'error': 'Invalid grade', 'details': str(e), 'request_id': request_id})
    except DeckStoreError as e:
        return _store_error(e, request_id)
    if updated is None:
        return JSONResponse(status_code=404, content={'success': False, 'error': 'Review item not found', 'request_id': request_id})
    return ReviewResponse(success=True, item=updated, request_id=request_id)


@app.get('/srs/session', response_model=SessionResponse)
async def review_session(fastapi_request: Request, now: Optional[int] = None):
    request_id = _request_id(fastapi_request)
    session = ReviewSession(get_engine(), now=now)
    return SessionResponse(success=True, mode=session.mode.value, items=session.queue, count=len(session.queue), request_id=request_id)


@app.on_event('startup')
async def on_startup():
    LOG.info('SRS service starting', extra={'env': settings.ENVIRONMENT, 'store_backend': get_engine().store.backend})


if __name__ == '__main__':
    import uvicorn
    uvicorn.run('main:app', host=settings.HOST, port=settings.PORT, log_level=settings.LOG_LEVEL.lower())
