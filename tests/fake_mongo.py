"""
An in-memory stand-in for the parts of pymongo's async database and collection that mongoable uses.

It raises the same pymongo.errors types a real server would (duplicate keys, index conflicts), supports
failure injection (`collection.fail_next(exc)`) and artificial latency (`collection.delay`), and keeps
documents in insertion order.
"""
from __future__ import annotations

import asyncio
import copy
import re
from types import SimpleNamespace
from typing import Any, Iterable, Mapping

from pymongo import ReturnDocument
from pymongo.errors import BulkWriteError, CollectionInvalid, DuplicateKeyError, OperationFailure


_MISSING = object()


def get_path(document: Mapping[str, Any], path: str) -> Any:
    current: Any = document
    for part in path.split("."):
        if isinstance(current, Mapping) and part in current:
            current = current[part]
        else:
            return _MISSING
    return current


def set_path(document: dict[str, Any], path: str, value: Any) -> None:
    parts = path.split(".")
    current = document
    for part in parts[:-1]:
        current = current.setdefault(part, {})
    current[parts[-1]] = value


def unset_path(document: dict[str, Any], path: str) -> None:
    parts = path.split(".")
    current: Any = document
    for part in parts[:-1]:
        current = current.get(part)
        if not isinstance(current, dict):
            return
    current.pop(parts[-1], None)


def _compare(value: Any, operator: str, operand: Any) -> bool:
    if operator == "$eq":
        return _equals(value, operand)
    if operator == "$ne":
        return not _equals(value, operand)
    if operator == "$in":
        return any(_equals(value, item) for item in operand)
    if operator == "$nin":
        return not any(_equals(value, item) for item in operand)
    if operator == "$exists":
        return (value is not _MISSING) == bool(operand)
    if operator == "$regex":
        return isinstance(value, str) and re.search(operand, value) is not None
    if value is _MISSING or value is None:
        return False
    if operator == "$gt":
        return value > operand
    if operator == "$gte":
        return value >= operand
    if operator == "$lt":
        return value < operand
    if operator == "$lte":
        return value <= operand
    raise OperationFailure(f"unknown operator: {operator}", code=2)


def _equals(value: Any, operand: Any) -> bool:
    if value is _MISSING:
        return operand is None
    if isinstance(value, list) and not isinstance(operand, list):
        return operand in value
    return value == operand


def matches(document: Mapping[str, Any], query: Mapping[str, Any]) -> bool:
    for key, condition in query.items():
        if key == "$and":
            if not all(matches(document, sub) for sub in condition):
                return False
            continue
        if key == "$or":
            if not any(matches(document, sub) for sub in condition):
                return False
            continue
        value = get_path(document, key)
        if isinstance(condition, Mapping) and condition and all(str(op).startswith("$") for op in condition):
            if not all(_compare(value, op, operand) for op, operand in condition.items()):
                return False
        elif not _equals(value, condition):
            return False
    return True


def sort_documents(documents: list[dict[str, Any]], sort: Iterable[tuple[str, int]]) -> list[dict[str, Any]]:
    result = list(documents)
    for key, direction in reversed(list(sort)):
        result.sort(key=lambda doc: _sort_key(get_path(doc, key)), reverse=direction == -1)
    return result


def _sort_key(value: Any) -> tuple:
    if value is _MISSING or value is None:
        return (0, 0)
    return (1, value)


def project(document: dict[str, Any], projection: Mapping[str, Any] | None) -> dict[str, Any]:
    if not projection:
        return document
    included = [key for key, flag in projection.items() if flag]
    if not included:
        return {key: value for key, value in document.items() if key not in projection}
    result: dict[str, Any] = {}
    if projection.get("_id", 1):
        result["_id"] = document.get("_id")
    for key in included:
        value = get_path(document, key)
        if value is not _MISSING:
            set_path(result, key, value)
    return result


def _resolve(document: Mapping[str, Any], expression: Any) -> Any:
    if isinstance(expression, str) and expression.startswith("$"):
        value = get_path(document, expression[1:])
        return None if value is _MISSING else value
    return expression


class FakeCursor:
    """ Mirrors AsyncCursor: sort/skip/limit chain synchronously, iteration is async. """

    def __init__(self, collection: FakeCollection, query: Mapping[str, Any], projection: Mapping[str, Any] | None = None) -> None:
        self._collection = collection
        self._query = dict(query)
        self._projection = projection
        self._sort: list[tuple[str, int]] | None = None
        self._skip = 0
        self._limit = 0
        self._results: list[dict[str, Any]] | None = None
        self.closed = False

    def sort(self, key_or_list: Any, direction: int | None = None) -> FakeCursor:
        if isinstance(key_or_list, str):
            self._sort = [(key_or_list, direction or 1)]
        elif isinstance(key_or_list, Mapping):
            self._sort = list(key_or_list.items())
        else:
            self._sort = list(key_or_list)
        return self

    def skip(self, count: int) -> FakeCursor:
        self._skip = count
        return self

    def limit(self, count: int) -> FakeCursor:
        self._limit = count
        return self

    async def _materialize(self) -> list[dict[str, Any]]:
        if self._results is None:
            await self._collection._before_operation()
            documents = [doc for doc in self._collection.documents if matches(doc, self._query)]
            if self._sort:
                documents = sort_documents(documents, self._sort)
            documents = documents[self._skip:]
            if self._limit:
                documents = documents[:self._limit]
            self._results = [project(copy.deepcopy(doc), self._projection) for doc in documents]
        return self._results

    def __aiter__(self) -> FakeCursor:
        return self

    async def __anext__(self) -> dict[str, Any]:
        results = await self._materialize()
        if not results:
            raise StopAsyncIteration
        return results.pop(0)

    async def to_list(self, length: int | None = None) -> list[dict[str, Any]]:
        results = await self._materialize()
        taken = results if length is None else results[:length]
        self._results = results[len(taken):]
        return list(taken)

    async def close(self) -> None:
        self.closed = True


class FakeCommandCursor:
    def __init__(self, documents: list[dict[str, Any]]) -> None:
        self._documents = documents

    def __aiter__(self) -> FakeCommandCursor:
        return self

    async def __anext__(self) -> dict[str, Any]:
        if not self._documents:
            raise StopAsyncIteration
        return self._documents.pop(0)

    async def to_list(self, length: int | None = None) -> list[dict[str, Any]]:
        taken = self._documents if length is None else self._documents[:length]
        self._documents = self._documents[len(taken):]
        return list(taken)

    async def close(self) -> None:
        return None


class FakeCollection:
    def __init__(self, name: str) -> None:
        self.name = name
        self.documents: list[dict[str, Any]] = []
        self.indexes: dict[str, dict[str, Any]] = {"_id_": {"key": [("_id", 1)], "unique": True}}
        self.delay: float = 0.0
        self.calls: list[str] = []
        self._failures: list[BaseException] = []

    # region: Test helpers
    def fail_next(self, exc: BaseException) -> None:
        """ The next operation raises exc instead of running. """
        self._failures.append(exc)

    async def _before_operation(self) -> None:
        if self.delay:
            await asyncio.sleep(self.delay)
        if self._failures:
            raise self._failures.pop(0)
    # endregion

    # region: Unique indexes
    def _check_unique(self, candidate: Mapping[str, Any], ignore: Mapping[str, Any] | None = None) -> None:
        for name, index in self.indexes.items():
            if not index["unique"]:
                continue
            keys = [key for key, _ in index["key"]]
            candidate_values = tuple(get_path(candidate, key) for key in keys)
            for existing in self.documents:
                if existing is ignore:
                    continue
                if tuple(get_path(existing, key) for key in keys) == candidate_values:
                    key_value = {key: (None if value is _MISSING else value) for key, value in zip(keys, candidate_values)}
                    raise DuplicateKeyError(
                        f"E11000 duplicate key error collection: {self.name} index: {name} dup key: {key_value}",
                        11000,
                        {"code": 11000, "keyPattern": dict(index["key"]), "keyValue": key_value},
                    )
    # endregion

    # region: Writes
    def _insert(self, document: Mapping[str, Any]) -> Any:
        stored = copy.deepcopy(dict(document))
        if "_id" not in stored:
            stored["_id"] = f"auto-{len(self.documents)}"
        self._check_unique(stored)
        self.documents.append(stored)
        return stored["_id"]

    async def insert_one(self, document: Mapping[str, Any]) -> SimpleNamespace:
        self.calls.append("insert_one")
        await self._before_operation()
        return SimpleNamespace(inserted_id=self._insert(document))

    async def insert_many(self, documents: Iterable[Mapping[str, Any]], ordered: bool = True) -> SimpleNamespace:
        self.calls.append("insert_many")
        await self._before_operation()
        inserted_ids = []
        for idx, document in enumerate(documents):
            try:
                inserted_ids.append(self._insert(document))
            except DuplicateKeyError as exc:
                raise BulkWriteError({
                    "writeErrors": [dict(exc.details or {}, index=idx, errmsg=str(exc))],
                    "nInserted": len(inserted_ids),
                })
        return SimpleNamespace(inserted_ids=inserted_ids)

    async def replace_one(self, filter: Mapping[str, Any], replacement: Mapping[str, Any]) -> SimpleNamespace:
        self.calls.append("replace_one")
        await self._before_operation()
        for idx, existing in enumerate(self.documents):
            if matches(existing, filter):
                stored = copy.deepcopy(dict(replacement))
                stored["_id"] = existing["_id"]
                self._check_unique(stored, ignore=existing)
                modified = stored != existing
                self.documents[idx] = stored
                return SimpleNamespace(matched_count=1, modified_count=int(modified))
        return SimpleNamespace(matched_count=0, modified_count=0)

    def _apply_update(self, document: dict[str, Any], update: Any) -> dict[str, Any]:
        updated = copy.deepcopy(document)
        if isinstance(update, list):
            for stage in update:
                for operator, fields in stage.items():
                    if operator not in ("$set", "$addFields"):
                        raise OperationFailure(f"unsupported pipeline stage in fake: {operator}", code=2)
                    for key, value in fields.items():
                        set_path(updated, key, _resolve(updated, value))
            return updated

        for operator, fields in update.items():
            for key, value in fields.items():
                if operator == "$set":
                    set_path(updated, key, value)
                elif operator == "$unset":
                    unset_path(updated, key)
                elif operator == "$inc":
                    current = get_path(updated, key)
                    set_path(updated, key, (0 if current is _MISSING else current) + value)
                elif operator == "$push":
                    current = get_path(updated, key)
                    set_path(updated, key, ([] if current is _MISSING else list(current)) + [value])
                else:
                    raise OperationFailure(f"unsupported update operator in fake: {operator}", code=2)
        return updated

    def _update_matching(self, filter: Mapping[str, Any], update: Any, multi: bool) -> tuple[int, int, dict[str, Any] | None]:
        matched = modified = 0
        last = None
        for idx, existing in enumerate(self.documents):
            if not matches(existing, filter):
                continue
            matched += 1
            updated = self._apply_update(existing, update)
            self._check_unique(updated, ignore=existing)
            if updated != existing:
                modified += 1
            self.documents[idx] = updated
            last = updated
            if not multi:
                break
        return matched, modified, last

    async def update_one(self, filter: Mapping[str, Any], update: Any) -> SimpleNamespace:
        self.calls.append("update_one")
        await self._before_operation()
        matched, modified, _ = self._update_matching(filter, update, multi=False)
        return SimpleNamespace(matched_count=matched, modified_count=modified, upserted_id=None)

    async def update_many(self, filter: Mapping[str, Any], update: Any) -> SimpleNamespace:
        self.calls.append("update_many")
        await self._before_operation()
        matched, modified, _ = self._update_matching(filter, update, multi=True)
        return SimpleNamespace(matched_count=matched, modified_count=modified, upserted_id=None)

    async def find_one_and_update(self, filter: Mapping[str, Any], update: Any, return_document: bool = ReturnDocument.BEFORE) -> dict[str, Any] | None:
        self.calls.append("find_one_and_update")
        await self._before_operation()
        before = next((copy.deepcopy(doc) for doc in self.documents if matches(doc, filter)), None)
        if before is None:
            return None
        _, _, after = self._update_matching({"_id": before["_id"]}, update, multi=False)
        return copy.deepcopy(after) if return_document == ReturnDocument.AFTER else before

    async def delete_one(self, filter: Mapping[str, Any]) -> SimpleNamespace:
        self.calls.append("delete_one")
        await self._before_operation()
        for idx, existing in enumerate(self.documents):
            if matches(existing, filter):
                del self.documents[idx]
                return SimpleNamespace(deleted_count=1)
        return SimpleNamespace(deleted_count=0)

    async def delete_many(self, filter: Mapping[str, Any]) -> SimpleNamespace:
        self.calls.append("delete_many")
        await self._before_operation()
        kept = [doc for doc in self.documents if not matches(doc, filter)]
        deleted = len(self.documents) - len(kept)
        self.documents = kept
        return SimpleNamespace(deleted_count=deleted)
    # endregion

    # region: Reads
    async def find_one(self, filter: Mapping[str, Any] | None = None, projection: Mapping[str, Any] | None = None) -> dict[str, Any] | None:
        self.calls.append("find_one")
        await self._before_operation()
        for existing in self.documents:
            if matches(existing, filter or {}):
                return project(copy.deepcopy(existing), projection)
        return None

    def find(self, filter: Mapping[str, Any] | None = None, projection: Mapping[str, Any] | None = None) -> FakeCursor:
        self.calls.append("find")
        return FakeCursor(self, filter or {}, projection)

    async def count_documents(self, filter: Mapping[str, Any]) -> int:
        self.calls.append("count_documents")
        await self._before_operation()
        return sum(1 for doc in self.documents if matches(doc, filter))

    async def aggregate(self, pipeline: list[Mapping[str, Any]]) -> FakeCommandCursor:
        self.calls.append("aggregate")
        await self._before_operation()
        documents = [copy.deepcopy(doc) for doc in self.documents]
        for stage in pipeline:
            ((operator, spec),) = stage.items()
            if operator == "$match":
                documents = [doc for doc in documents if matches(doc, spec)]
            elif operator == "$sort":
                documents = sort_documents(documents, spec.items())
            elif operator == "$skip":
                documents = documents[spec:]
            elif operator == "$limit":
                documents = documents[:spec]
            elif operator == "$project":
                documents = [project(doc, spec) for doc in documents]
            elif operator == "$count":
                documents = [{spec: len(documents)}] if documents else []
            elif operator == "$group":
                documents = self._group(documents, spec)
            else:
                raise OperationFailure(f"Unrecognized pipeline stage name: '{operator}'", code=40324)
        return FakeCommandCursor(documents)

    def _group(self, documents: list[dict[str, Any]], spec: Mapping[str, Any]) -> list[dict[str, Any]]:
        groups: dict[Any, dict[str, Any]] = {}
        for doc in documents:
            group_id = _resolve(doc, spec["_id"])
            group = groups.setdefault(group_id, {"_id": group_id})
            for field, accumulator in spec.items():
                if field == "_id":
                    continue
                ((operator, expression),) = accumulator.items()
                if operator != "$sum":
                    raise OperationFailure(f"unsupported accumulator in fake: {operator}", code=2)
                group[field] = group.get(field, 0) + _resolve(doc, expression)
        return list(groups.values())
    # endregion

    # region: Indexes
    async def create_indexes(self, indexes: list[Any]) -> list[str]:
        self.calls.append("create_indexes")
        await self._before_operation()
        names = []
        for index_model in indexes:
            spec = index_model.document
            name = spec["name"]
            key = list(spec["key"].items())
            unique = bool(spec.get("unique", False))
            existing = self.indexes.get(name)
            if existing is not None:
                if existing["key"] != key:
                    raise OperationFailure(f"An existing index has the same name as the requested index: {name}", code=86)
                if existing["unique"] != unique:
                    raise OperationFailure(f"An existing index has the same name as the requested index but different options: {name}", code=85)
                names.append(name)
                continue
            for other_name, other in self.indexes.items():
                if other["key"] == key and other["unique"] != unique:
                    raise OperationFailure(f"Index already exists with a different name: {other_name}", code=85)
            self.indexes[name] = {"key": key, "unique": unique}
            names.append(name)
        return names
    # endregion


class FakeDatabase:
    def __init__(self, name: str = "mongoable_test") -> None:
        self.name = name
        self.collections: dict[str, FakeCollection] = {}
        self.views: dict[str, dict[str, Any]] = {}

    def __getitem__(self, name: str) -> FakeCollection:
        if name not in self.collections:
            self.collections[name] = FakeCollection(name)
        return self.collections[name]

    async def create_collection(self, name: str, **kwargs: Any) -> FakeCollection:
        if name in self.collections or name in self.views:
            raise CollectionInvalid(f"collection {name} already exists")
        self.views[name] = dict(kwargs)
        return self[name]
