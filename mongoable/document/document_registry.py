import asyncio
from typing import TypeVar

from bidict import KeyDuplicationError, bidict

from ..utilities.logger import get_logger
from ..utilities.setup_error import SetupError
from .sync_indexes import IndexSyncResult

from typing import TYPE_CHECKING
if TYPE_CHECKING:
	from .document import Document


T = TypeVar('T')

class DocumentRegistry(bidict[str, type]):
	""" Collection name <-> Document class, for every concrete Document class. """

	def collection_name_to_cls(self, collection_name: str) -> 'type[Document]':
		if collection_name not in self:
			raise ValueError(f"Document class with collection name {collection_name} not found in our document registry.")
		return self[collection_name]

	def cls_to_collection_name(self, cls: 'type[Document]') -> str:
		if cls not in self.inverse:
			raise ValueError(f"Document class {cls.__name__} not found in our document registry.")
		return self.inverse[cls]


def get_all_subclasses(cls: type[T]) -> set[type[T]]:
	""" Get all subclasses of a class, including indirect subclasses. """
	subclasses = set()
	for subclass in cls.__subclasses__():
		subclasses.add(subclass)
		subclasses.update(get_all_subclasses(subclass))
	return subclasses


def generate_document_registry(base: 'type[Document] | None' = None) -> DocumentRegistry:
	"""
	Uses introspection to find all concrete subclasses of base (Document by default) and maps each collection name to its class.

	In the process, we validate that collection names are unique across Document classes.
	Abstract classes (__collection_name__ = ABSTRACT) are skipped.
	"""
	from .document import Document
	base = base or Document

	registry = DocumentRegistry()
	# Sort for a stable error message when two classes collide
	for document_class in sorted(get_all_subclasses(base), key=lambda cls: (cls.__module__, cls.__qualname__)):
		if document_class.is_abstract():
			continue

		collection_name = document_class.get_collection_name()
		try:
			registry.put(collection_name, document_class)
		except KeyDuplicationError:
			existing = registry[collection_name]
			raise SetupError(f"Collection name {collection_name} defined by Document class {document_class.__qualname__} is already used by {existing.__qualname__}.")
	return registry


async def sync_all_indexes(base: 'type[Document] | None' = None, timeout: float | None = None) -> list[IndexSyncResult]:
	""" Apply the declared indexes of every registered Document class, concurrently. Run this at startup. """
	registry = generate_document_registry(base)
	try:
		async with asyncio.TaskGroup() as task_group:
			tasks = [task_group.create_task(document_class.db_create_indexes(timeout=timeout)) for document_class in registry.values()]
	except ExceptionGroup as group:
		# The first failure cancels the remaining syncs
		raise group.exceptions[0]
	results = [task.result() for task in tasks]

	conflicts = sum(len(result.conflicts) for result in results)
	get_logger().info(f"indexes synchronized for {len(results)} collections ({conflicts} conflicts)")
	return results
