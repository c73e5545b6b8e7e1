import os
import sys
import logging
import pathlib
import contextvars
from logging.handlers import RotatingFileHandler
from pythonjsonlogger import jsonlogger

_request_ctx_var = contextvars.ContextVar('request_ctx', default={})


def set_request_context(request_id: str):
    _request_ctx_var.set({'request_id': request_id})


def get_request_context():
    return _request_ctx_var.get()


class RequestContextFilter(logging.Filter):
    """Stamps each record with the request id of the current HTTP call."""

    def filter(self, record):
        record.request_id = get_request_context().get('request_id')
        return True


def get_logger(name: str = 'aceai'):
    LOG_LEVEL = os.getenv('LOG_LEVEL', 'INFO')
    LOG_FORMAT = os.getenv('LOG_FORMAT', 'json')
    # file logging is opt-in; the deck service normally runs next to the app
    LOG_FILE_PATH = os.getenv('LOG_FILE_PATH')
    LOG_MAX_SIZE = int(os.getenv('LOG_MAX_SIZE', str(10 * 1024 * 1024)))
    LOG_MAX_FILES = int(os.getenv('LOG_MAX_FILES', '7'))

    logger = logging.getLogger(name)
    if logger.handlers:
        return logger

    logger.setLevel(LOG_LEVEL.upper())

    ch = logging.StreamHandler(sys.stdout)
    if LOG_FORMAT == 'json':
        fmt = jsonlogger.JsonFormatter('%(asctime)s %(levelname)s %(name)s %(message)s %(request_id)s')
    else:
        fmt = logging.Formatter('%(asctime)s %(levelname)s %(name)s %(message)s')
    ch.setFormatter(fmt)
    logger.addHandler(ch)

    if LOG_FILE_PATH:
        log_path = pathlib.Path(LOG_FILE_PATH)
        if not log_path.is_absolute():
            log_path = pathlib.Path(os.getcwd()) / log_path
        log_path.mkdir(parents=True, exist_ok=True)

        combined = RotatingFileHandler(log_path / 'combined.log', maxBytes=LOG_MAX_SIZE, backupCount=LOG_MAX_FILES)
        combined.setFormatter(fmt)
        logger.addHandler(combined)

        errors = RotatingFileHandler(log_path / 'error.log', maxBytes=LOG_MAX_SIZE, backupCount=LOG_MAX_FILES)
        errors.setLevel(logging.ERROR)
        errors.setFormatter(fmt)
        logger.addHandler(errors)

    logger.addFilter(RequestContextFilter())

    return logger


def log_request(request_id: str, method: str, path: str, status_code: int, duration_ms: float, ip: str = None):
    logger = get_logger()
    logger.info('http_request', extra={'request_id': request_id, 'method': method, 'path': path, 'status_code': status_code, 'duration_ms': duration_ms, 'ip': ip})


def log_review(item_id: str, grade: str, repetitions: int, interval_days: int, ease_factor: float, next_review_at: int):
    logger = get_logger()
    logger.info('srs_review_processed', extra={
        'item_id': item_id,
        'grade': grade,
        'repetitions': repetitions,
        'interval_days': interval_days,
        'ease_factor': round(ease_factor, 4),
        'next_review_at': next_review_at,
    })


def log_deck_write(backend: str, item_count: int, payload_bytes: int, duration_ms: float):
    logger = get_logger()
    logger.info('deck_write', extra={
        'backend': backend,
        'item_count': item_count,
        'payload_bytes': payload_bytes,
        'duration_ms': duration_ms,
    })
