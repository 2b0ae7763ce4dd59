#  Copyright (c) 2024. The ldap-sync Authors. See the AUTHORS file.
#  This file is part of the ldap-sync project and licensed under the terms of
#  the Apache License, Version 2.0. See the LICENSE file for details
"""
ldap_sync.targets.memory
~~~~~~~~~~~~~~~~~~~~~~~~

An object store keeping its records in memory.

It is used for dry runs against a configuration and in the tests.  Handles
work on a copy of the stored values: changes only become visible to
:meth:`MemoryObjectStore.search` once they have been inserted or updated.
"""
from __future__ import annotations

import dataclasses
import itertools
import typing

from ..concepts.types import AttributeKind, LINKED_KINDS
from ..exc import PersistenceError, QueryError
from ..oql import evaluate, parse_query, referenced_attributes
from ..passwords import hash_password


@dataclasses.dataclass
class ClassDef:
    attributes: dict[str, AttributeKind]
    #: attributes which must not be empty on insert or update
    mandatory: frozenset[str] = frozenset()
    #: linked set attribute → (linked class, attribute of the linked class referring back)
    links: dict[str, tuple[str, str]] = dataclasses.field(default_factory=dict)

    def __post_init__(self) -> None:
        linked_sets = {a for a, kind in self.attributes.items() if kind in LINKED_KINDS}
        if linked_sets != set(self.links):
            raise ValueError(f"Linked sets {sorted(linked_sets)} do not match the declared "
                             f"links {sorted(self.links)}")


class MemorySchema:
    def __init__(self, classes: typing.Mapping[str, ClassDef]) -> None:
        self.classes = dict(classes)

    def _get(self, class_name: str) -> ClassDef:
        try:
            return self.classes[class_name]
        except KeyError:
            raise KeyError(f"Unknown class {class_name!r}") from None

    def is_valid_class(self, class_name: str) -> bool:
        return class_name in self.classes

    def get_attributes_list(self, class_name: str) -> set[str]:
        return set(self._get(class_name).attributes)

    def list_attribute_defs(self, class_name: str) -> dict[str, AttributeKind]:
        return dict(self._get(class_name).attributes)

    def get_linked_class(self, class_name: str, attribute: str) -> str:
        return self._get(class_name).links[attribute][0]


class MemoryObject:
    def __init__(
        self,
        store: MemoryObjectStore,
        class_name: str,
        values: dict[str, typing.Any] | None = None,
        key: int | None = None,
    ) -> None:
        self._store = store
        self._class_name = class_name
        self._definition = store.schema._get(class_name)
        self.values = values if values is not None else {}
        self.linked: dict[str, list[MemoryObject]] = {}
        self._key = key

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self._class_name}::{self._key}>"

    @property
    def class_name(self) -> str:
        return self._class_name

    @property
    def key(self) -> int | None:
        return self._key

    def _kind(self, attribute: str) -> AttributeKind:
        try:
            return self._definition.attributes[attribute]
        except KeyError:
            raise PersistenceError(
                f"{self._class_name} has no attribute {attribute!r}"
            ) from None

    def get(self, attribute: str) -> typing.Any:
        if self._kind(attribute) in LINKED_KINDS:
            return list(self.linked.get(attribute, []))
        return self.values.get(attribute)

    def set(self, attribute: str, value: typing.Any) -> None:
        kind = self._kind(attribute)
        if kind in LINKED_KINDS:
            raise PersistenceError(f"Linked set {attribute!r} can only be added to")
        if kind is AttributeKind.ONE_WAY_PASSWORD and value is not None:
            value = hash_password(value)
        self.values[attribute] = value

    def add_linked(self, attribute: str, linked: MemoryObject) -> None:
        if self._kind(attribute) not in LINKED_KINDS:
            raise PersistenceError(f"{attribute!r} is not a linked set")
        self.linked.setdefault(attribute, []).append(linked)

    def _check_mandatory(self, ignore: frozenset[str] = frozenset()) -> None:
        if missing := sorted(a for a in self._definition.mandatory - ignore
                             if self.values.get(a) in (None, "")):
            raise PersistenceError(
                f"{self._class_name}: missing mandatory attribute(s) {', '.join(missing)}"
            )

    def insert(self) -> int:
        if self._key is not None:
            raise PersistenceError(f"{self!r} has already been inserted")
        self._check_mandatory()
        for attribute, linked_objects in self.linked.items():
            _, back_reference = self._definition.links[attribute]
            for linked in linked_objects:
                linked._check_mandatory(ignore=frozenset({back_reference}))
        self._key = self._store._insert(self._class_name, self.values)
        for attribute, linked_objects in self.linked.items():
            _, back_reference = self._definition.links[attribute]
            for linked in linked_objects:
                linked.values[back_reference] = self._key
                linked._key = self._store._insert(linked.class_name, linked.values)
        return self._key

    def update(self) -> None:
        if self._key is None:
            raise PersistenceError(f"{self!r} has not been inserted yet")
        self._check_mandatory()
        self._store._update(self._class_name, self._key, self.values)


class MemoryObjectSet:
    def __init__(self, class_name: str, objects: list[MemoryObject]) -> None:
        self._class_name = class_name
        self._objects = iter(objects)
        self._count = len(objects)

    @property
    def class_name(self) -> str:
        return self._class_name

    @property
    def count(self) -> int:
        return self._count

    def fetch(self) -> MemoryObject | None:
        return next(self._objects, None)


class MemoryObjectStore:
    """Records are kept per class as ``id → values``.

    :attr:`insert_calls` and :attr:`update_calls` count the
    records written by inserts and updates.
    """

    def __init__(self, schema: MemorySchema) -> None:
        self.schema = schema
        self.records: dict[str, dict[int, dict[str, typing.Any]]] = {
            name: {} for name in schema.classes
        }
        self._ids = itertools.count(1)
        self.insert_calls = 0
        self.update_calls = 0

    def add_record(self, class_name: str, **values: typing.Any) -> int:
        """Store a record directly, bypassing validation and the call counters."""
        key = next(self._ids)
        self.records[class_name][key] = dict(values)
        return key

    def get_record(self, class_name: str, key: int) -> dict[str, typing.Any]:
        return dict(self.records[class_name][key])

    def _insert(self, class_name: str, values: dict[str, typing.Any]) -> int:
        self.insert_calls += 1
        key = next(self._ids)
        self.records[class_name][key] = dict(values)
        return key

    def _update(self, class_name: str, key: int, values: dict[str, typing.Any]) -> None:
        self.update_calls += 1
        self.records[class_name][key] = dict(values)

    def new_object(self, class_name: str) -> MemoryObject:
        if not self.schema.is_valid_class(class_name):
            raise PersistenceError(f"Unknown class {class_name!r}")
        return MemoryObject(self, class_name)

    def search(self, query: str) -> MemoryObjectSet:
        parsed = parse_query(query)
        if not self.schema.is_valid_class(parsed.class_name):
            raise QueryError(f"Unknown class {parsed.class_name!r}")
        known = self.schema.get_attributes_list(parsed.class_name) | {'id'}
        if unknown := sorted(set(referenced_attributes(parsed.condition)) - known):
            raise QueryError(f"{parsed.class_name} has no attribute(s) {', '.join(unknown)}")

        matches = []
        for key, values in self.records[parsed.class_name].items():
            record = {**values, 'id': key}
            if evaluate(parsed.condition, record.get):
                matches.append(MemoryObject(self, parsed.class_name, dict(values), key))
        return MemoryObjectSet(parsed.class_name, matches)
