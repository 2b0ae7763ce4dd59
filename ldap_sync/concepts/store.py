#  Copyright (c) 2024. The ldap-sync Authors. See the AUTHORS file.
#  This file is part of the ldap-sync project and licensed under the terms of
#  the Apache License, Version 2.0. See the LICENSE file for details
"""
ldap_sync.concepts.store
~~~~~~~~~~~~~~~~~~~~~~~~

The interfaces of the object store we synchronize into, and of the schema
describing its classes.  Implementations live in :mod:`ldap_sync.targets`.
"""
from __future__ import annotations

import typing

from .types import AttributeKind


class SchemaProvider(typing.Protocol):
    def is_valid_class(self, class_name: str) -> bool: ...

    def get_attributes_list(self, class_name: str) -> set[str]: ...

    def list_attribute_defs(self, class_name: str) -> typing.Mapping[str, AttributeKind]: ...

    def get_linked_class(self, class_name: str, attribute: str) -> str:
        """The class of the objects in the linked set :paramref:`attribute`."""


class StoredObject(typing.Protocol):
    """A handle to a new or an existing object of the store."""

    @property
    def class_name(self) -> str: ...

    @property
    def key(self) -> int | None:
        """The id of the object, ``None`` unless it has been inserted."""

    def get(self, attribute: str) -> typing.Any: ...

    def set(self, attribute: str, value: typing.Any) -> None: ...

    def add_linked(self, attribute: str, linked: StoredObject) -> None:
        """Add :paramref:`linked` to the linked set :paramref:`attribute`.

        Linked objects are persisted together with this object.
        """

    def insert(self) -> int:
        """Persist a new object.

        :raises PersistenceError: if the store rejects the object
        """

    def update(self) -> None:
        """Persist the changes made to an existing object.

        :raises PersistenceError: if the store rejects the changes
        """


class ObjectSet(typing.Protocol):
    """The result of a search."""

    @property
    def class_name(self) -> str: ...

    @property
    def count(self) -> int: ...

    def fetch(self) -> StoredObject | None:
        """Return the next object, ``None`` once the set is exhausted."""


class ObjectStore(typing.Protocol):
    def new_object(self, class_name: str) -> StoredObject: ...

    def search(self, query: str) -> ObjectSet:
        """Execute a query of the form ``SELECT <Class> WHERE …``.

        :raises QueryError: if the query cannot be parsed or refers to
            unknown classes or attributes
        """
