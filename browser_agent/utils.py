import logging
import time
from collections.abc import Callable, Coroutine
from functools import wraps
from typing import Any, ParamSpec, TypeVar

logger = logging.getLogger(__name__)

P = ParamSpec('P')
R = TypeVar('R')

# calls faster than this are not worth a log line
SLOW_CALL_THRESHOLD = 0.25


def _logger_for_call(args, kwargs) -> logging.Logger:
	self_logger = getattr(args[0], 'logger', None) if args else None
	if isinstance(self_logger, logging.Logger):
		return self_logger
	if 'browser_context' in kwargs:
		return getattr(kwargs['browser_context'], 'logger', logger)
	return logger


def time_execution_sync(additional_text: str = '') -> Callable[[Callable[P, R]], Callable[P, R]]:
	def decorator(func: Callable[P, R]) -> Callable[P, R]:
		@wraps(func)
		def wrapper(*args: P.args, **kwargs: P.kwargs) -> R:
			start_time = time.time()
			result = func(*args, **kwargs)
			execution_time = time.time() - start_time
			if execution_time > SLOW_CALL_THRESHOLD:
				_logger_for_call(args, kwargs).debug(f'⏳ {additional_text.strip("-")}() took {execution_time:.2f}s')
			return result

		return wrapper

	return decorator


def time_execution_async(
	additional_text: str = '',
) -> Callable[[Callable[P, Coroutine[Any, Any, R]]], Callable[P, Coroutine[Any, Any, R]]]:
	def decorator(func: Callable[P, Coroutine[Any, Any, R]]) -> Callable[P, Coroutine[Any, Any, R]]:
		@wraps(func)
		async def wrapper(*args: P.args, **kwargs: P.kwargs) -> R:
			start_time = time.time()
			result = await func(*args, **kwargs)
			execution_time = time.time() - start_time
			if execution_time > SLOW_CALL_THRESHOLD:
				_logger_for_call(args, kwargs).debug(f'⏳ {additional_text.strip("-")}() took {execution_time:.2f}s')
			return result

		return wrapper

	return decorator


def log_pretty_url(s: str, max_len: int = 22) -> str:
	"""Truncate/pretty-print a URL for log lines"""
	s = s.replace('https://', '').replace('http://', '').replace('www.', '')
	if len(s) > max_len:
		return s[:max_len] + '…'
	return s
