import time
from typing import Any, AsyncIterator, Generic, TypeVar

from ..errors import translate_errors
from ..utilities.logger import get_logger
from .list_options import ListOptions, normalize_sort

from typing import TYPE_CHECKING
if TYPE_CHECKING:
	from .document import Document


T = TypeVar('T', bound='Document')

class DocumentQuery(Generic[T]):
	""" The result of Document.db_find_many().

	Nothing is sent to the store until the query is iterated. Every `async for` (and every to_list() call) issues the query again,
	so a DocumentQuery can be consumed any number of times. Each pass is bounded by the query; an empty result is not an error.

		async for user in User.db_find_many({ "age": { "$gte": 18 } }):
			...
		users = await User.db_find_many({}, ListOptions(sort={ "username": 1 }, limit=10)).to_list()
	"""

	def __init__(self, document_cls: type[T], query: dict[str, Any], options: ListOptions | None = None, timeout: float | None = None) -> None:
		self.document_cls = document_cls
		self.query = query
		self.options = options or ListOptions()
		self.timeout = timeout

	def __repr__(self) -> str:
		return f"DocumentQuery({self.document_cls.__name__}, query={self.query!r}, options={self.options!r})"

	def _open_cursor(self, collection: Any) -> Any:
		cursor = collection.find(self.query)
		sort = normalize_sort(self.options.sort)
		if sort:
			cursor = cursor.sort(sort)
		if self.options.skip:
			cursor = cursor.skip(self.options.skip)
		if self.options.limit:
			cursor = cursor.limit(self.options.limit)
		return cursor

	async def __aiter__(self) -> AsyncIterator[T]:
		collection_name = self.document_cls.get_collection_name()
		collection = self.document_cls.get_collection()
		async with translate_errors(collection_name, "find_many"):
			cursor = self._open_cursor(collection)
		try:
			while True:
				async with translate_errors(collection_name, "find_many", self.timeout):
					try:
						document = await anext(cursor)
					except StopAsyncIteration:
						break
				yield self.document_cls.from_document(document)
		finally:
			await cursor.close()

	async def to_list(self) -> list[T]:
		""" Runs the query and collects every matching document. The timeout covers the whole fetch. """
		start_time = time.time()
		collection_name = self.document_cls.get_collection_name()
		collection = self.document_cls.get_collection()
		async with translate_errors(collection_name, "find_many"):
			cursor = self._open_cursor(collection)
		try:
			async with translate_errors(collection_name, "find_many", self.timeout):
				documents = await cursor.to_list()
		finally:
			await cursor.close()

		objs = [self.document_cls.from_document(document) for document in documents]
		get_logger().debug(f"Database Usage Logging: Retrieved {len(objs)} documents of type '{self.document_cls.__name__}' for query: {self.query} in {(time.time() - start_time):.3f} seconds")
		return objs

