"""
Errors raised by Document operations.

Every failure that crosses the Document boundary is one of:
- NotFound: a single-document lookup matched nothing.
- DuplicateKey: a write violated a unique index (including _id).
- ConnectionFailure: the store was unreachable. OperationTimeout is the timeout variant.
- InvalidArgument: a filter, update, pipeline or document was rejected before (or by the driver before) reaching the store.
- StoreError: anything else the store reported.

Driver exceptions never escape. classify_error() is the one place they are translated.
"""
import asyncio
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator

from bson import errors as bson_errors
from pymongo import errors as pymongo_errors

from .utilities.logger import get_logger


DUPLICATE_KEY_CODES = frozenset({11000, 11001, 12582})
TIMEOUT_CODES = frozenset({50, 262})  # MaxTimeMSExpired, ExceededTimeLimit


class DocumentError(Exception):
	""" Base class for everything a Document operation can raise. """

	def __init__(self, message: str, *, collection_name: str | None = None, operation: str | None = None):
		self.message = message
		self.collection_name = collection_name
		self.operation = operation
		super().__init__(message)

	def __str__(self) -> str:
		if self.collection_name and self.operation:
			return f"{self.operation} on '{self.collection_name}': {self.message}"
		return self.message


class NotFound(DocumentError):
	""" A single-document lookup matched zero documents. """


class DuplicateKey(DocumentError):
	""" A write violated a uniqueness constraint. """

	def __init__(self, message: str, *, key_pattern: dict | None = None, key_value: dict | None = None, **kwargs: Any):
		self.key_pattern = key_pattern
		self.key_value = key_value
		super().__init__(message, **kwargs)


class ConnectionFailure(DocumentError):
	""" The store could not be reached. """


class OperationTimeout(ConnectionFailure):
	""" The operation did not complete in time. The write may or may not have been applied. """


class InvalidArgument(DocumentError):
	""" Caller-supplied input failed validation. """


class StoreError(DocumentError):
	""" Any other failure reported by the store. """

	def __init__(self, message: str, *, code: int | None = None, **kwargs: Any):
		self.code = code
		super().__init__(message, **kwargs)


def _error_code(exc: BaseException) -> int | None:
	code = getattr(exc, "code", None)
	return code if isinstance(code, int) else None


def _duplicate_key_details(exc: BaseException) -> dict | None:
	""" Returns the driver's error details if exc describes a duplicate key violation. """
	if isinstance(exc, pymongo_errors.BulkWriteError):
		for write_error in (exc.details or {}).get("writeErrors", []):
			if write_error.get("code") in DUPLICATE_KEY_CODES:
				return write_error
		return None
	if isinstance(exc, pymongo_errors.DuplicateKeyError) or _error_code(exc) in DUPLICATE_KEY_CODES:
		details = getattr(exc, "details", None)
		return details if isinstance(details, dict) else {}
	return None


def _is_timeout(exc: BaseException) -> bool:
	if isinstance(exc, (TimeoutError, pymongo_errors.NetworkTimeout, pymongo_errors.ExecutionTimeout, pymongo_errors.WTimeoutError)):
		return True
	if isinstance(exc, pymongo_errors.PyMongoError) and getattr(exc, "timeout", False):
		return True
	return _error_code(exc) in TIMEOUT_CODES


def classify_error(exc: Exception, collection_name: str | None = None, operation: str | None = None) -> DocumentError:
	""" Translate any exception raised while talking to the store into a DocumentError.
	Unrecognized shapes always resolve to StoreError. """
	context = {"collection_name": collection_name, "operation": operation}

	if isinstance(exc, DocumentError):
		return exc

	details = _duplicate_key_details(exc)
	if details is not None:
		return DuplicateKey(
			str(exc),
			key_pattern=details.get("keyPattern"),
			key_value=details.get("keyValue"),
			**context
		)

	if _is_timeout(exc):
		return OperationTimeout(str(exc) or "Operation timed out.", **context)

	if isinstance(exc, pymongo_errors.ConnectionFailure):
		return ConnectionFailure(str(exc), **context)

	if isinstance(exc, (bson_errors.InvalidDocument, pymongo_errors.InvalidName, pymongo_errors.InvalidOperation, TypeError, ValueError)):
		return InvalidArgument(str(exc), **context)

	return StoreError(str(exc) or type(exc).__name__, code=_error_code(exc), **context)


@asynccontextmanager
async def translate_errors(collection_name: str | None, operation: str, timeout: float | None = None) -> AsyncIterator[None]:
	""" Runs the body under an optional timeout and re-raises any failure as a DocumentError.
	Cancellation is not intercepted. """
	try:
		async with asyncio.timeout(timeout):
			yield
	except DocumentError:
		raise
	except Exception as exc:
		error = classify_error(exc, collection_name, operation)
		get_logger().error(f"error in {operation} on {collection_name!r}: {type(error).__name__}: {error.message}")
		raise error from exc
