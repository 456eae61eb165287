from typing import Generic, TypeVar

from .random_id import random_id
from typing import TYPE_CHECKING
if TYPE_CHECKING:
	from .document import Document


T = TypeVar('T', bound='Document')

class DocumentId(str, Generic[T]):
	""" Used for a document's own _id field and for foreign keys.
	When used as a foreign key, annotate as DocumentId[DocumentClass]. """
	def __new__(cls, _id: str | None = None):
		if not _id:
			_id = random_id()
		instance = super().__new__(cls, _id)
		return instance
	
	@classmethod
	def with_prefix(cls, prefix: str) -> 'DocumentId':
		if len(prefix) != 3:
			raise ValueError("DocumentId prefix should be 3 characters.")
		return DocumentId(prefix + random_id())
