from dataclasses import dataclass
from typing import Any, Mapping, Sequence

from ..errors import InvalidArgument


SortSpec = Mapping[str, int] | Sequence[tuple[str, int]]
""" Either { "field": 1, "other": -1 } or [("field", 1), ("other", -1)]. """


@dataclass
class ListOptions:
    """ Options for Document.db_find_many(). """
    sort: SortSpec | None = None
    skip: int | None = None
    limit: int | None = None

    def __post_init__(self) -> None:
        if self.skip is not None and self.skip < 0:
            raise InvalidArgument(f"skip must be >= 0, got {self.skip}.")
        if self.limit is not None and self.limit < 0:
            raise InvalidArgument(f"limit must be >= 0, got {self.limit}.")


def normalize_sort(sort: SortSpec | None) -> list[tuple[str, int]] | None:
    """ Returns the sort as a list of (field, direction) pairs, the form every driver version accepts. """
    if not sort:
        return None
    pairs: list[tuple[str, Any]]
    if isinstance(sort, Mapping):
        pairs = list(sort.items())
    elif isinstance(sort, (list, tuple)):
        pairs = []
        for item in sort:
            if not isinstance(item, (list, tuple)) or len(item) != 2:
                raise InvalidArgument(f"Sort entries must be (field, direction) pairs, got {item!r}.")
            pairs.append((item[0], item[1]))
    else:
        raise InvalidArgument(f"Sort must be a mapping or a list of pairs, got {type(sort).__name__}.")

    for key, direction in pairs:
        if not isinstance(key, str) or not key:
            raise InvalidArgument(f"Sort field names must be non-empty strings, got {key!r}.")
        if direction not in (1, -1) and not isinstance(direction, Mapping):
            raise InvalidArgument(f"Sort direction for '{key}' must be 1 or -1, got {direction!r}.")
    return pairs
