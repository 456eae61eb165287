"""
Applies the indexes a Document declares in __indexes__.

Creating an index that already exists with the same definition is a no-op on the store, so this can run on every startup.
An index that conflicts with an existing one (same keys with different options, or same name with different keys) is
reported and logged but not dropped or rebuilt. Reconcile those by hand.
"""
from dataclasses import dataclass, field
from typing import Any

from pymongo import IndexModel

from ..errors import StoreError, translate_errors
from ..utilities.logger import get_logger

from typing import TYPE_CHECKING
if TYPE_CHECKING:
	from .document import Document


INDEX_CONFLICT_CODES = frozenset({68, 85, 86})  # IndexAlreadyExists, IndexOptionsConflict, IndexKeySpecsConflict


@dataclass(frozen=True)
class IndexConflict:
	index_name: str
	keys: dict[str, Any]
	message: str
	code: int | None = None

@dataclass
class IndexSyncResult:
	collection_name: str
	created: list[str] = field(default_factory=list)
	""" Names of the declared indexes now in place. """
	conflicts: list[IndexConflict] = field(default_factory=list)

	@property
	def ok(self) -> bool:
		return not self.conflicts


async def sync_indexes(document_cls: 'type[Document]', timeout: float | None = None) -> IndexSyncResult:
	""" Create the declared indexes for one Document class.

	Raises:
		ConnectionFailure: the store is unreachable.
		DocumentError: any other failure, e.g. an invalid index specification or existing data violating a new unique index.
	"""
	collection_name = document_cls.get_collection_name()
	index_models: list[IndexModel] = list(document_cls.__indexes__)
	if not index_models:
		get_logger().debug(f"no indexes declared for {collection_name!r}")
		return IndexSyncResult(collection_name)

	collection = document_cls.get_collection()
	try:
		async with translate_errors(collection_name, "create_indexes", timeout):
			created = await collection.create_indexes(index_models)
	except StoreError as error:
		if error.code not in INDEX_CONFLICT_CODES:
			raise
		get_logger().warning(f"index conflict on {collection_name!r}, applying declared indexes one at a time")
		return await _sync_individually(collection, collection_name, index_models, timeout)

	get_logger().debug(f"indexes created for {collection_name!r}: {created}")
	return IndexSyncResult(collection_name, created=list(created))


async def _sync_individually(collection: Any, collection_name: str, index_models: list[IndexModel], timeout: float | None) -> IndexSyncResult:
	result = IndexSyncResult(collection_name)
	for index_model in index_models:
		spec = index_model.document
		try:
			async with translate_errors(collection_name, "create_indexes", timeout):
				result.created.extend(await collection.create_indexes([index_model]))
		except StoreError as error:
			if error.code not in INDEX_CONFLICT_CODES:
				raise
			conflict = IndexConflict(
				index_name=spec["name"],
				keys=dict(spec["key"]),
				message=error.message,
				code=error.code
			)
			get_logger().error(f"index {conflict.index_name!r} on {collection_name!r} conflicts with an existing index: {conflict.message}")
			result.conflicts.append(conflict)
	return result
