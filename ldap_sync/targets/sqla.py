#  Copyright (c) 2024. The ldap-sync Authors. See the AUTHORS file.
#  This file is part of the ldap-sync project and licensed under the terms of
#  the Apache License, Version 2.0. See the LICENSE file for details
"""
ldap_sync.targets.sqla
~~~~~~~~~~~~~~~~~~~~~~

An object store on top of the mapped classes of an SQLAlchemy declarative
registry.

The kind of an attribute is derived from its column type:

* ``String`` (and ``Text``, ``Enum``) → ``String``
* ``Integer`` with a foreign key → ``ExternalKey``, otherwise ``Integer``
* ``Numeric`` → ``Decimal``
* ``DateTime`` → ``DateTime``
* columns with ``info={"one_way_password": True}`` → ``OneWayPassword``
* one-to-many relationships → ``LinkedSet``, or ``LinkedSetIndirect`` with
  ``info={"indirect": True}`` (relationships to association objects)

Everything else is ``Other``.  Primary key columns are not attributes.
"""
from __future__ import annotations

import typing

import wrapt
from sqlalchemy import and_, create_engine, not_, or_, select
from sqlalchemy import types as sqltypes
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import ColumnProperty, Mapper, RelationshipProperty, Session, sessionmaker
from sqlalchemy.sql.elements import ColumnElement

from .. import logger
from ..concepts.types import AttributeKind
from ..exc import PersistenceError, QueryError
from ..oql import BooleanOperation, Comparison, Expression, Not, parse_query
from ..passwords import hash_password


def establish_and_return_session(connection_string: str) -> Session:
    engine = create_engine(connection_string)
    return sessionmaker(bind=engine)()


def attribute_kind(prop: typing.Any) -> AttributeKind:
    match prop:
        case RelationshipProperty(uselist=True):
            if prop.info.get('indirect'):
                return AttributeKind.LINKED_SET_INDIRECT
            return AttributeKind.LINKED_SET
        case ColumnProperty():
            column = prop.columns[0]
            if column.info.get('one_way_password'):
                return AttributeKind.ONE_WAY_PASSWORD
            match column.type:
                case sqltypes.Integer() if column.foreign_keys:
                    return AttributeKind.EXTERNAL_KEY
                case sqltypes.Integer():
                    return AttributeKind.INTEGER
                case sqltypes.Numeric():
                    return AttributeKind.DECIMAL
                case sqltypes.DateTime():
                    return AttributeKind.DATETIME
                case sqltypes.String():
                    return AttributeKind.STRING
    return AttributeKind.OTHER


class SqlaSchema:
    """The schema of the classes mapped by :paramref:`base`.

    :param base: a declarative base class, or anything else with a ``registry``
    """

    def __init__(self, base: typing.Any) -> None:
        base.registry.configure()
        self.mappers: dict[str, Mapper[typing.Any]] = {
            mapper.class_.__name__: mapper for mapper in base.registry.mappers
        }
        self._kinds: dict[str, dict[str, AttributeKind]] = {
            name: self._build_kinds(mapper) for name, mapper in self.mappers.items()
        }

    @staticmethod
    def _build_kinds(mapper: Mapper[typing.Any]) -> dict[str, AttributeKind]:
        primary_keys = set(mapper.primary_key)
        return {
            prop.key: attribute_kind(prop)
            for prop in mapper.attrs
            if not (isinstance(prop, ColumnProperty) and prop.columns[0] in primary_keys)
        }

    def get_class(self, class_name: str) -> type:
        try:
            return self.mappers[class_name].class_
        except KeyError:
            raise KeyError(f"Unknown class {class_name!r}") from None

    def is_valid_class(self, class_name: str) -> bool:
        return class_name in self.mappers

    def get_attributes_list(self, class_name: str) -> set[str]:
        return set(self._kinds[class_name])

    def list_attribute_defs(self, class_name: str) -> dict[str, AttributeKind]:
        return dict(self._kinds[class_name])

    def get_linked_class(self, class_name: str, attribute: str) -> str:
        return self.mappers[class_name].relationships[attribute].mapper.class_.__name__


@wrapt.decorator
def with_commit(wrapped, instance, args, kwargs):
    """Commit after the wrapped method of a :class:`SqlaObject`.

    Database errors are turned into a :class:`PersistenceError` after
    rolling back.
    """
    session = instance.session
    try:
        rv = wrapped(*args, **kwargs)
        session.commit()
        return rv
    except SQLAlchemyError as e:
        session.rollback()
        raise PersistenceError(f"{instance!r} could not be saved: {getattr(e, 'orig', e)}") from e


class SqlaObject:
    def __init__(self, session: Session, schema: SqlaSchema, instance: typing.Any) -> None:
        self.session = session
        self.schema = schema
        self.instance = instance

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.class_name}::{self.key}>"

    @property
    def class_name(self) -> str:
        return type(self.instance).__name__

    @property
    def key(self) -> int | None:
        mapper = self.schema.mappers[self.class_name]
        return mapper.primary_key_from_instance(self.instance)[0]

    def _kind(self, attribute: str) -> AttributeKind:
        try:
            return self.schema.list_attribute_defs(self.class_name)[attribute]
        except KeyError:
            raise PersistenceError(f"{self.class_name} has no attribute {attribute!r}") from None

    def get(self, attribute: str) -> typing.Any:
        self._kind(attribute)
        return getattr(self.instance, attribute)

    def set(self, attribute: str, value: typing.Any) -> None:
        if self._kind(attribute) is AttributeKind.ONE_WAY_PASSWORD and value is not None:
            value = hash_password(value)
        setattr(self.instance, attribute, value)

    def add_linked(self, attribute: str, linked: SqlaObject) -> None:
        self._kind(attribute)
        getattr(self.instance, attribute).append(linked.instance)

    @with_commit
    def insert(self) -> int:
        self.session.add(self.instance)
        self.session.flush()
        return typing.cast(int, self.key)

    @with_commit
    def update(self) -> None:
        if self.key is None:
            raise PersistenceError(f"{self!r} has not been inserted yet")
        self.session.flush()


class SqlaObjectSet:
    def __init__(self, session: Session, schema: SqlaSchema, class_name: str,
                 objects: typing.Sequence[typing.Any]) -> None:
        self.session = session
        self.schema = schema
        self._class_name = class_name
        self._objects = iter(objects)
        self._count = len(objects)

    @property
    def class_name(self) -> str:
        return self._class_name

    @property
    def count(self) -> int:
        return self._count

    def fetch(self) -> SqlaObject | None:
        instance = next(self._objects, None)
        return None if instance is None else SqlaObject(self.session, self.schema, instance)


def _column(mapper: Mapper[typing.Any], attribute: str) -> typing.Any:
    if attribute not in mapper.column_attrs:
        raise QueryError(f"{mapper.class_.__name__} has no attribute {attribute!r}")
    return getattr(mapper.class_, attribute)


def to_clause(condition: Expression, mapper: Mapper[typing.Any]) -> ColumnElement[bool]:
    """Translate a query condition into an SQL expression on the class of :paramref:`mapper`."""
    match condition:
        case Comparison(attribute=attribute, operator=op, value=value):
            column = _column(mapper, attribute)
            match op:
                case 'LIKE':
                    return column.ilike(value)
                case 'NOT LIKE':
                    return not_(column.ilike(value))
                case '=':
                    return column == value
                case '!=':
                    return column != value
                case '<':
                    return column < value
                case '<=':
                    return column <= value
                case '>':
                    return column > value
                case '>=':
                    return column >= value
        case Not(operand=operand):
            return not_(to_clause(operand, mapper))
        case BooleanOperation(operator='AND', operands=operands):
            return and_(*(to_clause(o, mapper) for o in operands))
        case BooleanOperation(operator='OR', operands=operands):
            return or_(*(to_clause(o, mapper) for o in operands))
    raise QueryError(f"Cannot translate {condition!r}")


class SqlaObjectStore:
    def __init__(self, session: Session, schema: SqlaSchema) -> None:
        self.session = session
        self.schema = schema

    def new_object(self, class_name: str) -> SqlaObject:
        try:
            model = self.schema.get_class(class_name)
        except KeyError as e:
            raise PersistenceError(str(e)) from None
        return SqlaObject(self.session, self.schema, model())

    def search(self, query: str) -> SqlaObjectSet:
        parsed = parse_query(query)
        try:
            model = self.schema.get_class(parsed.class_name)
        except KeyError:
            raise QueryError(f"Unknown class {parsed.class_name!r}") from None
        statement = select(model)
        if parsed.condition is not None:
            statement = statement.where(
                to_clause(parsed.condition, self.schema.mappers[parsed.class_name])
            )
        logger.debug("SQL: %s", statement)
        try:
            objects = self.session.scalars(statement).all()
        except SQLAlchemyError as e:
            self.session.rollback()
            raise QueryError(f"Query {query!r} failed: {e}") from e
        return SqlaObjectSet(self.session, self.schema, parsed.class_name, objects)
