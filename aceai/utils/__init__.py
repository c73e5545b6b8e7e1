"""Utility subpackage for the study service"""

from .logger import (
	get_logger,
	log_request,
	log_review,
	log_deck_write,
	set_request_context,
	get_request_context,
)

__all__ = [
	'get_logger',
	'log_request',
	'log_review',
	'log_deck_write',
	'set_request_context',
	'get_request_context',
]
