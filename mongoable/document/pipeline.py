"""
Helpers for building aggregation pipelines.

Documents pass pipelines straight through to the store. These helpers only save typing:

    pipeline = [
        match({ "user": user_id }),
        lookup(from_="users", local_field="user", foreign_field="_id", as_field="user"),
        unwind("$user"),
        sort({ "created_at": -1 }),
        limit(10),
    ]
"""
from typing import Any, Mapping, Sequence

from ..errors import InvalidArgument
from .list_options import SortSpec, normalize_sort


Stage = dict[str, Any]


def match(query: Mapping[str, Any]) -> Stage:
    return { "$match": dict(query) }

def lookup(*, from_: str, local_field: str, foreign_field: str, as_field: str) -> Stage:
    return {
        "$lookup": {
            "from": from_,
            "localField": local_field,
            "foreignField": foreign_field,
            "as": as_field,
        }
    }

def project(projection: Mapping[str, Any]) -> Stage:
    return { "$project": dict(projection) }

def unwind(path: str, *, preserve_null_and_empty_arrays: bool = False) -> Stage:
    # The store requires field paths to be prefixed with "$".
    if not path.startswith("$"):
        path = "$" + path
    stage: dict[str, Any] = { "path": path }
    if preserve_null_and_empty_arrays:
        stage["preserveNullAndEmptyArrays"] = True
    return { "$unwind": stage }

def add_fields(fields: Mapping[str, Any]) -> Stage:
    return { "$addFields": dict(fields) }

def sort(spec: SortSpec) -> Stage:
    pairs = normalize_sort(spec)
    if not pairs:
        raise InvalidArgument("A $sort stage needs at least one field.")
    return { "$sort": dict(pairs) }

def skip(count: int) -> Stage:
    if count < 0:
        raise InvalidArgument(f"$skip must be >= 0, got {count}.")
    return { "$skip": count }

def limit(count: int) -> Stage:
    if count <= 0:
        raise InvalidArgument(f"$limit must be > 0, got {count}.")
    return { "$limit": count }


def validate_pipeline(pipeline: Sequence[Mapping[str, Any]]) -> list[Mapping[str, Any]]:
    """ Checks the shape of a pipeline: a list of stages, each a mapping with exactly one "$" key.
    Stage contents are not interpreted. """
    if isinstance(pipeline, (str, bytes, Mapping)) or not isinstance(pipeline, Sequence):
        raise InvalidArgument(f"A pipeline must be a list of stages, got {type(pipeline).__name__}.")
    stages = list(pipeline)
    for idx, stage in enumerate(stages):
        if not isinstance(stage, Mapping) or len(stage) != 1:
            raise InvalidArgument(f"Pipeline stage {idx} must be a mapping with exactly one operator, got {stage!r}.")
        operator = next(iter(stage))
        if not isinstance(operator, str) or not operator.startswith("$"):
            raise InvalidArgument(f"Pipeline stage {idx} operator must start with '$', got {operator!r}.")
    return stages
