import asyncio
import dataclasses
import enum
import functools
import time
import types
from dataclasses import dataclass, field, fields, is_dataclass
from datetime import datetime
from typing import Any, ClassVar, Literal, Mapping, Self, Sequence, Union, get_args, get_origin, get_type_hints

from pymongo import IndexModel, ReturnDocument
from pymongo.asynchronous.collection import AsyncCollection
from pymongo.asynchronous.database import AsyncDatabase

from ..errors import DocumentError, InvalidArgument, NotFound, StoreError, translate_errors
from ..utilities.logger import get_logger
from ..utilities.result import DeleteResult, InsertManyResult, Page, UpdateResult
from ..utilities.setup_error import SetupError
from ..utilities.special_values import ABSTRACT, AUTO
from .collection_name import collection_name
from .document_id import DocumentId
from .list_options import ListOptions, SortSpec
from .pipeline import validate_pipeline
from .query import DocumentQuery
from .sync_indexes import IndexSyncResult, sync_indexes
from .timestamps import CREATED_AT, UPDATED_AT, apply_insert_timestamps, apply_replace_timestamps, as_utc, normalize_update, utc_now
from .update_method import UpdateMethod

"""
Timestamps:

Documents that inherit from TimestampedDocument get created_at and updated_at fields which are maintained on every write:
	- db_save_self() on a new _id (insert) sets both to now.
	- db_save_self() on an existing _id (full replace) keeps the stored created_at and sets updated_at to now.
	- db_update_one(), db_update_many() and db_find_one_and_update() add updated_at to the $set of the same update.
Plain Documents are written exactly as given.
"""

@dataclass(kw_only=True)
class Document:
	""" A dataclass that inherits from this class can be saved to MongoDb as a document.
	NOTE: ** SUBCLASSES MUST BE DECORATED WITH @dataclass **

	Retrieved objects will have the _id from the database. Newly created objects will be assigned a randomly generated _id unless you specify one.

		@dataclass
		class User(TimestampedDocument):
			__indexes__ = [IndexModel([("username", ASCENDING)], unique=True)]
			username: str
			age: int = 0

		user = await User(username="ada").db_save_self()
		user = await User.db_find_one({ "username": "ada" })
	"""
	# Class fields
	__collection_name__: ClassVar[str] = ABSTRACT
	""" AUTO (the default for subclasses) derives the name from get_type_name(). Set a string to override. ABSTRACT marks classes that are never stored. """
	__indexes__: ClassVar[list[IndexModel]] = []
	__timestamps__: ClassVar[bool] = False

	# Instance fields
	_id: DocumentId = field(default_factory=DocumentId)

	def __init_subclass__(cls, **kwargs: Any) -> None:
		super().__init_subclass__(**kwargs)
		# Only look at the class's own attributes, so that subclasses of an ABSTRACT base are concrete by default.
		if "__collection_name__" not in cls.__dict__:
			cls.__collection_name__ = AUTO

	# region: Naming and connection
	@classmethod
	def get_type_name(cls) -> str:
		""" The logical type name used to derive the collection name. Override to decouple the collection from the class name. """
		return cls.__name__

	@classmethod
	def is_abstract(cls) -> bool:
		return cls.__collection_name__ == ABSTRACT

	@classmethod
	def get_collection_name(cls) -> str:
		if cls.is_abstract():
			raise SetupError(f"{cls.__name__} is abstract and has no collection. Subclass it to store documents.")
		if cls.__collection_name__ == AUTO:
			return collection_name(cls.get_type_name())
		return cls.__collection_name__

	@classmethod
	def get_db(cls) -> AsyncDatabase:
		""" Override this to store a Document type in a different database. """
		from .mongo_db import create_mongo_db
		return create_mongo_db()

	@classmethod
	def get_collection(cls) -> AsyncCollection:
		""" Returns the corresponding Pymongo Collection. """
		return cls.get_db()[cls.get_collection_name()]

	@classmethod
	def generate_id(cls) -> DocumentId:
		return DocumentId()
	# endregion

	# region: Hooks
	@classmethod
	def __class_query__(cls) -> dict[str, Any]:
		""" This method should return a dictionary that specifies a query which should always be applied when retrieving, updating or deleting documents of this class. """
		return {}

	def __before_saving__(self, update_method: UpdateMethod) -> None:
		""" Extend this if you want to perform validation or other operations before the document is inserted or replaced. """
		return
	# endregion

	# region: Document <> Bson
	def to_document(self) -> dict[str, Any]:
		document: dict[str, Any] = {}
		for field_ in fields(self):
			document[field_.name] = _to_bson(getattr(self, field_.name))

		# Loose fields picked up from the stored document (see from_document) are written back unchanged.
		for key, value in self.__dict__.items():
			if key in document or key.startswith("__"):
				continue
			document[key] = _to_bson(value)
		return document

	@classmethod
	def from_document(cls, document: Mapping[str, Any]) -> Self:
		if not isinstance(document, Mapping):
			raise StoreError(f"Expected a document for {cls.__name__}, got {type(document).__name__}.", collection_name=cls.get_collection_name())
		try:
			obj = _dataclass_from_bson(cls, document)
		except (TypeError, ValueError) as exc:
			raise StoreError(f"Could not convert document {document.get('_id')!r} into {cls.__name__}: {exc}", collection_name=cls.get_collection_name()) from exc
		return obj
	# endregion

	@classmethod
	def default(cls) -> Self:
		""" A zero-value instance: every field without a default gets the zero value of its type, _id is freshly generated,
		and timestamps are set to now if the type keeps them. """
		obj = _default_dataclass(cls)
		if cls.__timestamps__:
			apply_insert_timestamps(obj)
		return obj

	# region: Validation
	@classmethod
	def _scoped_filter(cls, filter: Mapping[str, Any] | None) -> dict[str, Any]:
		if filter is None:
			filter = {}
		if not isinstance(filter, Mapping):
			raise InvalidArgument(f"Filter must be a mapping, got {type(filter).__name__}.", collection_name=cls.get_collection_name())
		for key in filter:
			if not isinstance(key, str):
				raise InvalidArgument(f"Filter keys must be strings, got {key!r}.", collection_name=cls.get_collection_name())
		return cls.__class_query__() | dict(filter)

	@classmethod
	def _prepare_update(cls, update: Mapping[str, Any] | Sequence[Mapping[str, Any]]) -> dict[str, Any] | list[Mapping[str, Any]]:
		if isinstance(update, Mapping):
			if not update:
				raise InvalidArgument("Update must not be empty.", collection_name=cls.get_collection_name())
			if "$set" in update and not isinstance(update["$set"], Mapping):
				raise InvalidArgument(f"Update operator $set expects a mapping, got {update['$set']!r}.", collection_name=cls.get_collection_name())
			prepared = normalize_update(update, touch=cls.__timestamps__)
			if not prepared:
				raise InvalidArgument("Update has nothing to set.", collection_name=cls.get_collection_name())
			for operator, value in prepared.items():
				if not isinstance(value, Mapping):
					raise InvalidArgument(f"Update operator {operator} expects a mapping, got {value!r}.", collection_name=cls.get_collection_name())
				if "_id" in value:
					raise InvalidArgument("_id cannot be updated.", collection_name=cls.get_collection_name())
			return prepared

		# An aggregation pipeline update
		stages = validate_pipeline(update)
		if not stages:
			raise InvalidArgument("Update must not be empty.", collection_name=cls.get_collection_name())
		if cls.__timestamps__:
			stages.append({ "$set": { UPDATED_AT: utc_now() } })
		return stages
	# endregion

	# region: Writes
	@classmethod
	async def db_save(cls, document: Self, *, timeout: float | None = None) -> Self:
		""" Insert the document if its _id is not in the store, otherwise replace the stored document with it. """
		if not isinstance(document, cls):
			raise InvalidArgument(f"Expected {cls.__name__}, but got {type(document).__name__}.", collection_name=cls.get_collection_name())
		return await document.db_save_self(timeout=timeout)

	async def db_save_self(self, *, timeout: float | None = None) -> Self:
		""" Persist this object. Inserts on first save, replaces the whole stored document afterwards.

		Raises:
			DuplicateKey: a unique index rejected the document.
		"""
		start_time = time.time()
		cls = type(self)
		name = cls.get_collection_name()
		collection = cls.get_collection()

		async with translate_errors(name, "save", timeout):
			# Assuming that _id's are globally unique, we don't need to add the class query here
			stored = await collection.find_one({ "_id": self._id }, projection={ CREATED_AT: 1 })
			if stored is None:
				await self._insert_self(collection)
			else:
				self.__before_saving__(UpdateMethod.REPLACE)
				if cls.__timestamps__:
					apply_replace_timestamps(self, stored.get(CREATED_AT))
				result = await collection.replace_one({ "_id": self._id }, self.to_document())
				if result.matched_count == 0:
					# Deleted between the lookup and the replace
					await self._insert_self(collection)

		get_logger().debug(f"Database Usage Logging: Saved document of type '{cls.__name__}' with _id: {self._id} in {(time.time() - start_time):.3f} seconds")
		return self

	async def _insert_self(self, collection: AsyncCollection) -> None:
		self.__before_saving__(UpdateMethod.INSERT)
		if type(self).__timestamps__:
			apply_insert_timestamps(self)
		await collection.insert_one(self.to_document())

	@classmethod
	async def db_insert_many(cls, documents: Sequence[Self], *, timeout: float | None = None) -> InsertManyResult:
		""" Insert multiple new documents in one ordered write. Stops at the first failure. """
		if not documents:
			return InsertManyResult()

		now = utc_now()
		bson_documents = []
		for document in documents:
			if not isinstance(document, cls):
				raise InvalidArgument(f"Expected {cls.__name__}, but got {type(document).__name__}.", collection_name=cls.get_collection_name())
			document.__before_saving__(UpdateMethod.INSERT)
			if cls.__timestamps__:
				apply_insert_timestamps(document, now)
			bson_documents.append(document.to_document())

		collection = cls.get_collection()
		async with translate_errors(cls.get_collection_name(), "insert_many", timeout):
			result = await collection.insert_many(bson_documents, ordered=True)
		return InsertManyResult(inserted_ids=list(result.inserted_ids))

	@classmethod
	async def db_update_one(cls, filter: Mapping[str, Any], update: Mapping[str, Any] | Sequence[Mapping[str, Any]], *, timeout: float | None = None) -> UpdateResult:
		""" Update the first matching document. Matching nothing is not an error: the counts are 0. """
		query = cls._scoped_filter(filter)
		prepared = cls._prepare_update(update)
		collection = cls.get_collection()
		async with translate_errors(cls.get_collection_name(), "update_one", timeout):
			result = await collection.update_one(query, prepared)
		return UpdateResult(matched_count=result.matched_count, modified_count=result.modified_count)

	@classmethod
	async def db_update_many(cls, filter: Mapping[str, Any], update: Mapping[str, Any] | Sequence[Mapping[str, Any]], *, timeout: float | None = None) -> UpdateResult:
		""" Update every matching document. Matching nothing is not an error: the counts are 0. """
		query = cls._scoped_filter(filter)
		prepared = cls._prepare_update(update)
		collection = cls.get_collection()
		async with translate_errors(cls.get_collection_name(), "update_many", timeout):
			result = await collection.update_many(query, prepared)
		return UpdateResult(matched_count=result.matched_count, modified_count=result.modified_count)

	@classmethod
	async def db_find_one_and_update(cls, filter: Mapping[str, Any], update: Mapping[str, Any] | Sequence[Mapping[str, Any]], *, timeout: float | None = None) -> Self:
		""" Atomically update the first matching document and return it as it is after the update.

		Raises:
			NotFound: nothing matched.
		"""
		query = cls._scoped_filter(filter)
		prepared = cls._prepare_update(update)
		collection = cls.get_collection()
		async with translate_errors(cls.get_collection_name(), "find_one_and_update", timeout):
			document = await collection.find_one_and_update(query, prepared, return_document=ReturnDocument.AFTER)
		if document is None:
			raise NotFound(f"No {cls.__name__} found for query: {query}", collection_name=cls.get_collection_name(), operation="find_one_and_update")
		return cls.from_document(document)
	# endregion

	# region: Retrieval
	@classmethod
	async def db_find_one(cls, filter: Mapping[str, Any] | None = None, *, timeout: float | None = None) -> Self:
		""" Query the database and return the first matching document as a Python object.

		Raises:
			NotFound: no document matched.
		"""
		start_time = time.time()
		query = cls._scoped_filter(filter)
		collection = cls.get_collection()
		async with translate_errors(cls.get_collection_name(), "find_one", timeout):
			document = await collection.find_one(query)

		get_logger().debug(f"Database Usage Logging: Retrieved document of type '{cls.__name__}' for query: {query} in {(time.time() - start_time):.3f} seconds")
		if document is None:
			raise NotFound(f"No {cls.__name__} found for query: {query}", collection_name=cls.get_collection_name(), operation="find_one")
		return cls.from_document(document)

	@classmethod
	async def db_find_by_id(cls, _id: str, *, timeout: float | None = None) -> Self:
		""" Return one by id. Raises NotFound if there is no such document. """
		return await cls.db_find_one({ "_id": _id }, timeout=timeout)

	@classmethod
	def db_find_many(cls, filter: Mapping[str, Any] | None = None, options: ListOptions | None = None, *, timeout: float | None = None) -> DocumentQuery[Self]:
		""" Returns a lazy, restartable query over all matching documents. See DocumentQuery. """
		return DocumentQuery(cls, cls._scoped_filter(filter), options, timeout)

	@classmethod
	async def db_count_documents(cls, filter: Mapping[str, Any] | None = None, *, timeout: float | None = None) -> int:
		""" Return the total number of documents that match the query. """
		query = cls._scoped_filter(filter)
		collection = cls.get_collection()
		async with translate_errors(cls.get_collection_name(), "count_documents", timeout):
			return await collection.count_documents(query)

	@classmethod
	async def db_paginate(cls, filter: Mapping[str, Any] | None = None, page: int = 1, page_size: int = 20, sort: SortSpec | None = None, *, timeout: float | None = None) -> Page[Self]:
		""" Return one page of matching documents along with the total count.

		Pass a sort for stable pages across calls; without one the store may return documents in any order.
		Pages past the end have empty data.
		"""
		for label, value, minimum in (("page", page, 1), ("page_size", page_size, 1)):
			if isinstance(value, bool) or not isinstance(value, int) or value < minimum:
				raise InvalidArgument(f"{label} must be an integer >= {minimum}, got {value!r}.", collection_name=cls.get_collection_name())

		options = ListOptions(sort=sort, skip=(page - 1) * page_size, limit=page_size)
		query = cls.db_find_many(filter, options)
		async with translate_errors(cls.get_collection_name(), "paginate", timeout):
			# A failure in either task cancels the other
			try:
				async with asyncio.TaskGroup() as task_group:
					count_task = task_group.create_task(cls.db_count_documents(filter))
					data_task = task_group.create_task(query.to_list())
			except ExceptionGroup as group:
				raise group.exceptions[0]
		total, data = count_task.result(), data_task.result()

		total_pages = (total + page_size - 1) // page_size
		return Page(data=data, total=total, page=page, page_size=page_size, total_pages=total_pages)
	# endregion

	# region: Deletion
	@classmethod
	async def db_delete_one(cls, filter: Mapping[str, Any], *, timeout: float | None = None) -> DeleteResult:
		""" Delete the first matching document. Matching nothing is not an error. """
		query = cls._scoped_filter(filter)
		collection = cls.get_collection()
		async with translate_errors(cls.get_collection_name(), "delete_one", timeout):
			result = await collection.delete_one(query)
		return DeleteResult(deleted_count=result.deleted_count)

	@classmethod
	async def db_delete_many(cls, filter: Mapping[str, Any], *, timeout: float | None = None) -> DeleteResult:
		""" Delete all objects matching the query from the Mongo database. """
		query = cls._scoped_filter(filter)
		collection = cls.get_collection()
		async with translate_errors(cls.get_collection_name(), "delete_many", timeout):
			result = await collection.delete_many(query)
		return DeleteResult(deleted_count=result.deleted_count)

	async def db_delete_self(self, *, timeout: float | None = None) -> None:
		""" Delete this object from the Mongo database.

		Raises:
			NotFound: the document is not in the store.
		"""
		result = await type(self).db_delete_one({ "_id": self._id }, timeout=timeout)
		if result.deleted_count != 1:
			raise NotFound(f"No {type(self).__name__} with _id {self._id} to delete.", collection_name=type(self).get_collection_name(), operation="delete_one")
	# endregion

	# region: Aggregation
	@classmethod
	async def db_aggregate(cls, pipeline: Sequence[Mapping[str, Any]], *, timeout: float | None = None) -> list[dict[str, Any]]:
		""" Run an aggregation pipeline and return the raw result documents. """
		stages = validate_pipeline(pipeline)
		class_query = cls.__class_query__()
		if class_query:
			stages.insert(0, { "$match": class_query })

		collection = cls.get_collection()
		async with translate_errors(cls.get_collection_name(), "aggregate", timeout):
			cursor = await collection.aggregate(stages)
			return await cursor.to_list()

	@classmethod
	async def db_aggregate_documents(cls, pipeline: Sequence[Mapping[str, Any]], *, timeout: float | None = None) -> list[Self]:
		""" Returns a list of objs based on the pipeline. Note that the pipeline MUST produce documents that match this class's format. """
		return [cls.from_document(document) for document in await cls.db_aggregate(pipeline, timeout=timeout)]

	@classmethod
	async def db_create_view(cls, source: str, pipeline: Sequence[Mapping[str, Any]], *, timeout: float | None = None) -> bool:
		""" Create a read-only view named after this class over the source collection. Returns False if the store refuses. """
		stages = validate_pipeline(pipeline)
		db = cls.get_db()
		try:
			async with translate_errors(cls.get_collection_name(), "create_view", timeout):
				await db.create_collection(cls.get_collection_name(), viewOn=source, pipeline=stages)
		except DocumentError:
			return False
		return True
	# endregion

	# region: Indexes
	@classmethod
	async def db_create_indexes(cls, *, timeout: float | None = None) -> IndexSyncResult:
		""" Apply __indexes__. Safe to call repeatedly. Conflicting definitions are logged and returned, not raised. """
		return await sync_indexes(cls, timeout=timeout)
	# endregion


@dataclass(kw_only=True)
class TimestampedDocument(Document):
	""" A Document whose writes maintain created_at and updated_at. """
	__collection_name__ = ABSTRACT
	__timestamps__ = True

	created_at: datetime = field(default_factory=utc_now)
	updated_at: datetime = field(default_factory=utc_now)


# region: Conversion helpers
def _to_bson(value: Any) -> Any:
	if is_dataclass(value) and not isinstance(value, type):
		return { field_.name: _to_bson(getattr(value, field_.name)) for field_ in fields(value) }
	if isinstance(value, enum.Enum):
		return value.value
	if isinstance(value, str):
		return str(value)  # DocumentId and other str subclasses
	if isinstance(value, Mapping):
		return { key: _to_bson(item) for key, item in value.items() }
	if isinstance(value, (list, tuple, set, frozenset)):
		return [_to_bson(item) for item in value]
	return value


@functools.cache
def _type_hints(cls: type) -> dict[str, Any]:
	return get_type_hints(cls)


def _is_union(annotation: Any) -> bool:
	return get_origin(annotation) in (Union, types.UnionType)


def _from_bson(value: Any, annotation: Any) -> Any:
	if value is None:
		return None

	if _is_union(annotation):
		# Use the first member the value converts into, e.g. the dataclass in "Address | None".
		for member in get_args(annotation):
			if member is type(None):
				continue
			if is_dataclass(member) and not isinstance(value, Mapping):
				continue
			return _from_bson(value, member)
		return value

	origin = get_origin(annotation)
	if annotation is DocumentId or origin is DocumentId:
		# Ids the store assigned itself (ObjectId) are kept as they are, so that saves still address the same document.
		return DocumentId(value) if isinstance(value, str) else value
	if annotation is datetime and isinstance(value, datetime):
		return as_utc(value)
	if isinstance(annotation, type) and is_dataclass(annotation) and isinstance(value, Mapping):
		return _dataclass_from_bson(annotation, value)
	if isinstance(annotation, type) and issubclass(annotation, enum.Enum):
		return annotation(value)
	if origin in (list, set, frozenset, tuple) and isinstance(value, (list, tuple)):
		args = get_args(annotation)
		item_type = args[0] if args else Any
		items = [_from_bson(item, item_type) for item in value]
		return origin(items)
	if origin is dict and isinstance(value, Mapping):
		args = get_args(annotation)
		value_type = args[1] if len(args) == 2 else Any
		return { key: _from_bson(item, value_type) for key, item in value.items() }
	return value


def _dataclass_from_bson(cls: type, document: Mapping[str, Any]) -> Any:
	hints = _type_hints(cls)
	kwargs: dict[str, Any] = {}
	extra: dict[str, Any] = {}
	field_names = set()
	for field_ in fields(cls):
		field_names.add(field_.name)
		if not field_.init:
			continue
		if field_.name in document:
			kwargs[field_.name] = _from_bson(document[field_.name], hints.get(field_.name, Any))
		elif field_.default is dataclasses.MISSING and field_.default_factory is dataclasses.MISSING:
			raise ValueError(f"Document missing a value for field {field_.name}.")
		else:
			get_logger().debug(f"Using default value for {cls.__name__}.{field_.name}.")

	# Allow extra fields
	# Keep keys we don't have a field for, so that they survive a load/save round trip.
	for key, value in document.items():
		if key not in field_names:
			extra[key] = value

	obj = cls(**kwargs)
	for key, value in extra.items():
		setattr(obj, key, value)
	return obj


_ZERO_VALUES: dict[Any, Any] = {
	str: "",
	int: 0,
	float: 0.0,
	bool: False,
	bytes: b"",
}


def _zero_value(annotation: Any, owner: type, field_name: str) -> Any:
	if isinstance(annotation, type) and annotation in _ZERO_VALUES:
		return _ZERO_VALUES[annotation]
	if annotation is Any or annotation is type(None):
		return None
	if _is_union(annotation):
		args = get_args(annotation)
		if type(None) in args:
			return None
		return _zero_value(args[0], owner, field_name)

	origin = get_origin(annotation)
	if annotation is DocumentId or origin is DocumentId:
		return ""
	if origin in (list, set, frozenset, tuple, dict):
		return origin()
	if origin is Literal:
		return get_args(annotation)[0]
	if annotation is datetime:
		return utc_now()
	if isinstance(annotation, type) and issubclass(annotation, enum.Enum):
		return next(iter(annotation))
	if isinstance(annotation, type) and is_dataclass(annotation):
		return _default_dataclass(annotation)
	if isinstance(annotation, type):
		try:
			return annotation()
		except TypeError:
			pass
	raise SetupError(f"Cannot build a default value for {owner.__name__}.{field_name} of type {annotation!r}.")


def _default_dataclass(cls: type) -> Any:
	hints = _type_hints(cls)
	kwargs = {
		field_.name: _zero_value(hints.get(field_.name, Any), cls, field_.name)
		for field_ in fields(cls)
		if field_.init and field_.default is dataclasses.MISSING and field_.default_factory is dataclasses.MISSING
	}
	return cls(**kwargs)
# endregion
