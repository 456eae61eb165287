from dataclasses import dataclass, field
from typing import Any, Generic, TypeVar


T = TypeVar('T')

@dataclass(frozen=True)
class UpdateResult:
    """ Counts for an update. A filter that matches nothing is not an error: both counts are 0. """
    matched_count: int
    modified_count: int

@dataclass(frozen=True)
class DeleteResult:
    deleted_count: int

@dataclass(frozen=True)
class InsertManyResult:
    inserted_ids: list[Any] = field(default_factory=list)

@dataclass
class Page(Generic[T]):
    """ One page of a paginated query. A page past the end has empty data. """
    data: list[T]
    total: int
    page: int
    page_size: int
    total_pages: int

    @property
    def has_next(self) -> bool:
        return self.page < self.total_pages
