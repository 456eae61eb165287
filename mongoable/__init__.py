"""
mongoable: dataclass documents for MongoDB.

	from dataclasses import dataclass
	from pymongo import ASCENDING, IndexModel
	from mongoable import TimestampedDocument, sync_all_indexes

	@dataclass
	class User(TimestampedDocument):
		__indexes__ = [IndexModel([("username", ASCENDING)], unique=True)]
		username: str

	await sync_all_indexes()
	user = await User(username="ada").db_save_self()
"""

from .document.collection_name import collection_name
from .document.document import Document, TimestampedDocument
from .document.document_id import DocumentId
from .document.document_registry import DocumentRegistry, generate_document_registry, sync_all_indexes
from .document.list_options import ListOptions
from .document.mongo_db import close_mongo_db, create_mongo_db, use_mongo_db
from .document.query import DocumentQuery
from .document.random_id import random_id
from .document.sync_indexes import IndexConflict, IndexSyncResult, sync_indexes
from .document.update_method import UpdateMethod
from .errors import (
	ConnectionFailure,
	DocumentError,
	DuplicateKey,
	InvalidArgument,
	NotFound,
	OperationTimeout,
	StoreError,
	classify_error,
)
from .utilities.logger import set_log_level, set_logger
from .utilities.result import DeleteResult, InsertManyResult, Page, UpdateResult
from .utilities.setup_error import SetupError
from .utilities.special_values import ABSTRACT, AUTO

__all__ = [
	"ABSTRACT",
	"AUTO",
	"ConnectionFailure",
	"DeleteResult",
	"Document",
	"DocumentError",
	"DocumentId",
	"DocumentQuery",
	"DocumentRegistry",
	"DuplicateKey",
	"IndexConflict",
	"IndexSyncResult",
	"InsertManyResult",
	"InvalidArgument",
	"ListOptions",
	"NotFound",
	"OperationTimeout",
	"Page",
	"SetupError",
	"StoreError",
	"TimestampedDocument",
	"UpdateMethod",
	"UpdateResult",
	"classify_error",
	"close_mongo_db",
	"collection_name",
	"create_mongo_db",
	"generate_document_registry",
	"random_id",
	"set_log_level",
	"set_logger",
	"sync_all_indexes",
	"sync_indexes",
	"use_mongo_db",
]
