"""
Derives collection names from Document type names.

The rule is:
    1. Convert to snake_case. Acronym runs stay together (HTTPRequest -> http_request).
    2. Treat hyphens, spaces, dots and any other non-identifier character as separators.
    3. Pluralize by appending "s", unless the name already ends in "s".

Irregular plurals are not handled. "Person" maps to "persons" and "Address" maps to "address".
"""
import re

from ..errors import InvalidArgument


_ACRONYM_BOUNDARY = re.compile(r"([A-Z]+)([A-Z][a-z])")
_WORD_BOUNDARY = re.compile(r"([a-z0-9])([A-Z])")
_SEPARATORS = re.compile(r"[^0-9A-Za-z]+")
_UNDERSCORES = re.compile(r"_+")


def to_snake_case(name: str) -> str:
    snake = _SEPARATORS.sub("_", name)
    snake = _ACRONYM_BOUNDARY.sub(r"\1_\2", snake)
    snake = _WORD_BOUNDARY.sub(r"\1_\2", snake)
    return _UNDERSCORES.sub("_", snake).strip("_").lower()


def pluralize(name: str) -> str:
    if name.endswith("s"):
        return name
    return name + "s"


def collection_name(type_name: str) -> str:
    """ Returns the collection name for a Document type name. Pure and deterministic. """
    snake = to_snake_case(type_name)
    if not snake:
        raise InvalidArgument(f"Cannot derive a collection name from type name {type_name!r}.")
    return pluralize(snake)
