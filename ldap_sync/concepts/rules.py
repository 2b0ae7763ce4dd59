#  Copyright (c) 2024. The ldap-sync Authors. See the AUTHORS file.
#  This file is part of the ldap-sync project and licensed under the terms of
#  the Apache License, Version 2.0. See the LICENSE file for details
"""
ldap_sync.concepts.rules
~~~~~~~~~~~~~~~~~~~~~~~~

Typed layers of a sync rule configuration.

Every field of a layer may be unset (``None``), because the configuration of
a sync rule is assembled from the module-wide ``default_sync_rule`` and the
rule's own overrides (see :func:`merge_layers`).  Completeness is checked
only once the layers have been merged.
"""
from __future__ import annotations

import dataclasses
import typing

from ..exc import ConfigError

#: The fields a server configuration must provide before connecting
SERVER_FIELDS = ('host', 'port', 'bind_dn', 'bind_password', 'base_dn', 'start_tls', 'options')

# keys which form the implicit server configuration of a rule
_SERVER_KEYS = frozenset(SERVER_FIELDS) | {'config_name', 'ldap_specific_placeholders'}


@dataclasses.dataclass
class ServerConfig:
    """The connection settings of one LDAP server.

    Values are kept as given in the configuration, so that
    :func:`ldap_sync.resolution.validate_server_config` can reject mistyped ones.
    """
    host: typing.Any = None
    port: typing.Any = None
    bind_dn: typing.Any = None
    bind_password: typing.Any = dataclasses.field(default=None, repr=False)
    base_dn: typing.Any = None
    start_tls: typing.Any = None
    options: typing.Any = None
    server_specific_placeholders: dict[str, typing.Any] | None = None
    #: reference to a named configuration of a settings source
    config_name: str | None = None

    @classmethod
    def from_mapping(cls, raw: typing.Mapping[str, typing.Any]) -> ServerConfig:
        placeholders = raw.get('ldap_specific_placeholders')
        return cls(
            **{key: raw.get(key) for key in SERVER_FIELDS},
            server_specific_placeholders=(
                dict(placeholders) if isinstance(placeholders, typing.Mapping) else None
            ),
            config_name=raw.get('config_name'),
        )

    def is_empty(self) -> bool:
        return all(getattr(self, f.name) is None for f in dataclasses.fields(self))

    def missing_fields(self) -> list[str]:
        return [key for key in SERVER_FIELDS if getattr(self, key) is None]


@dataclasses.dataclass
class ObjectRule:
    """How to find, create and update one object per directory entry."""
    target_class: str | None = None
    #: attribute code → value or placeholder template.  For linked sets, the value
    #: is a list of such mappings, one per linked object.
    attributes: dict[str, typing.Any] | None = None
    reconcile_on: str | None = None
    create: bool | None = None
    update: bool | None = None

    @classmethod
    def from_mapping(cls, raw: typing.Mapping[str, typing.Any]) -> ObjectRule:
        attributes = raw.get('attributes')
        return cls(
            target_class=raw.get('class'),
            attributes=dict(attributes) if attributes is not None else None,
            reconcile_on=raw.get('reconcile_on'),
            create=raw.get('create'),
            update=raw.get('update'),
        )

    @property
    def may_create(self) -> bool:
        # only an explicit `true` enables creation
        return self.create is True

    @property
    def may_update(self) -> bool:
        return self.update is True


@dataclasses.dataclass
class SyncRule:
    """One unit of work: an LDAP query plus the object rules applied to each result."""
    name: str | None = None
    ldap_servers: dict[str, ServerConfig] | None = None
    #: server settings given at the top level of the rule itself
    implicit_server: ServerConfig | None = None
    ldap_query: str | None = None
    ldap_attributes: list[str] | None = None
    objects: dict[str, ObjectRule] | None = None
    simulate: bool | None = None

    @classmethod
    def from_mapping(cls, raw: typing.Mapping[str, typing.Any], name: str | None = None) -> SyncRule:
        servers = raw.get('ldap_servers')
        implicit = ServerConfig.from_mapping({k: v for k, v in raw.items() if k in _SERVER_KEYS})
        objects = raw.get('objects')
        attributes = raw.get('ldap_attributes')
        return cls(
            name=name,
            ldap_servers=(
                {str(k): ServerConfig.from_mapping(v) for k, v in _as_ordered_mapping(servers).items()}
                if servers is not None else None
            ),
            implicit_server=None if implicit.is_empty() else implicit,
            ldap_query=raw.get('ldap_query'),
            ldap_attributes=list(attributes) if attributes is not None else None,
            objects=(
                {str(k): ObjectRule.from_mapping(v) for k, v in _as_ordered_mapping(objects).items()}
                if objects is not None else None
            ),
            simulate=raw.get('simulate'),
        )

    @property
    def is_simulation(self) -> bool:
        return self.simulate is True

    def iter_servers(self) -> typing.Iterator[tuple[str, ServerConfig]]:
        """Yield the named server configurations, or the single implicit one."""
        if self.ldap_servers:
            yield from self.ldap_servers.items()
        elif self.implicit_server is not None:
            yield 'default', self.implicit_server
        else:
            raise ConfigError(f"sync rule {self.name!r}: no LDAP servers specified")

    def object_rules(self) -> list[tuple[str, ObjectRule]]:
        return list((self.objects or {}).items())


def _as_ordered_mapping(value: typing.Any) -> dict[typing.Any, typing.Any]:
    """Lists are treated as mappings indexed by position."""
    if isinstance(value, typing.Mapping):
        return dict(value)
    if isinstance(value, list):
        return dict(enumerate(value))
    raise ConfigError(f"Expected a list or a mapping, got {type(value).__name__}")


T = typing.TypeVar("T")


def merge_layers(default: T, override: T) -> T:
    """Merge two configuration layers, where :paramref:`override` wins.

    Layers of the same dataclass are merged field by field, mappings
    key by key, both recursively.  Anything else (scalars, lists) is a leaf:
    an unset (``None``) override keeps the default, any other value replaces it.

    >>> merge_layers({'a': {'b': 1, 'c': 2}}, {'a': {'c': 3}})
    {'a': {'b': 1, 'c': 3}}
    """
    if override is None:
        return default
    if default is None:
        return override
    if (
        dataclasses.is_dataclass(default)
        and not isinstance(default, type)
        and type(default) is type(override)
    ):
        return dataclasses.replace(default, **{  # type: ignore[type-var]
            field.name: merge_layers(getattr(default, field.name), getattr(override, field.name))
            for field in dataclasses.fields(default)
        })
    if isinstance(default, typing.Mapping) and isinstance(override, typing.Mapping):
        merged = dict(default)
        for key, value in override.items():
            merged[key] = merge_layers(default.get(key), value)
        return typing.cast(T, merged)
    return override
