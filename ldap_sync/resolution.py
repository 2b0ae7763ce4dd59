#  Copyright (c) 2024. The ldap-sync Authors. See the AUTHORS file.
#  This file is part of the ldap-sync project and licensed under the terms of
#  the Apache License, Version 2.0. See the LICENSE file for details
"""
ldap_sync.resolution
~~~~~~~~~~~~~~~~~~~~

Determines the final server configuration of a sync rule.

A server configuration either lists all settings itself or points to a
named configuration (``config_name``) of a settings source:

* ``authent-ldap``: the default settings (``config_name == "default"``)
  or the ``servers`` table of the ``authent-ldap`` module
* ``knowitop-multi-ldap-auth``: the ``ldap_settings`` table of that module
* ``ldap_sync``: our own ``servers`` table

Which source is used is determined by the ``ldap_config_source`` setting.
"""
from __future__ import annotations

import dataclasses
import typing

from . import logger
from .concepts.rules import SERVER_FIELDS, ServerConfig
from .config import MODULE_NAME, Settings
from .exc import ConfigError

#: settings source → (module, key of its named server table)
SERVER_TABLES: dict[str, tuple[str, str]] = {
    'authent-ldap': ('authent-ldap', 'servers'),
    'knowitop-multi-ldap-auth': ('knowitop-multi-ldap-auth', 'ldap_settings'),
    MODULE_NAME: (MODULE_NAME, 'servers'),
}

#: fallbacks for the `authent-ldap` defaults
AUTHENT_LDAP_DEFAULTS: dict[str, typing.Any] = {
    'host': '',
    'port': 389,
    'bind_dn': '',
    'bind_password': '',
    'base_dn': '',
    'start_tls': False,
    'options': {},
}

_STRING_FIELDS = frozenset({'host', 'bind_dn', 'bind_password', 'base_dn'})


def has_expected_type(key: str, value: typing.Any) -> bool:
    if key in _STRING_FIELDS:
        return isinstance(value, str)
    if key == 'options':
        return isinstance(value, typing.Mapping)
    if key == 'start_tls':
        return isinstance(value, bool)
    if key == 'port':
        # bool is a subclass of int
        return isinstance(value, int) and not isinstance(value, bool)
    raise KeyError(key)


def resolve_server_config(
    partial: ServerConfig, rule_index: str, settings: Settings
) -> ServerConfig:
    """Return the complete server configuration for :paramref:`partial`.

    :param partial: the server configuration as given in the sync rule
    :param rule_index: name of the server configuration / sync rule, for messages
    :param settings: the settings to look up referenced configurations in

    :raises ConfigError: if no complete and correctly typed configuration
        can be determined.
    """
    resolved = dataclasses.replace(partial)
    if partial.config_name is None:
        logger.debug("Server configuration %s does not refer to a named configuration",
                     rule_index)
    else:
        resolved = _apply_named_config(resolved, partial.config_name, rule_index, settings)

    validate_server_config(resolved, rule_index)
    return dataclasses.replace(resolved, options=_normalize_options(resolved.options, rule_index))


def _apply_named_config(
    config: ServerConfig, config_name: str, rule_index: str, settings: Settings
) -> ServerConfig:
    source = settings.ldap_config_source
    logger.info("Using LDAP configuration %r from source %r", config_name, source)
    try:
        module, table_key = SERVER_TABLES[source]
    except KeyError:
        raise ConfigError(
            f"sync rule (index {rule_index}): unsupported ldap_config_source {source!r}"
        ) from None

    if config_name == 'default' and source == 'authent-ldap':
        logger.info("Using the default configuration of authent-ldap")
        return dataclasses.replace(config, **{
            key: settings.get_module_setting(module, key, fallback)
            for key, fallback in AUTHENT_LDAP_DEFAULTS.items()
        })

    server_configs = settings.get_module_setting(module, table_key, {})
    logger.debug("Found %d LDAP server configurations: %s",
                 len(server_configs), ", ".join(server_configs))
    try:
        named = server_configs[config_name]
    except KeyError:
        raise ConfigError(f"missing configuration: {config_name}") from None

    # mistyped or absent settings are skipped rather than defaulted
    return dataclasses.replace(config, **{
        key: named[key]
        for key in SERVER_FIELDS
        if key in named and has_expected_type(key, named[key])
    })


def validate_server_config(config: ServerConfig, rule_index: str) -> None:
    """Make sure there is enough information to connect to a server."""
    if missing := config.missing_fields():
        raise ConfigError(
            f"sync rule (index {rule_index}): invalid LDAP configuration: "
            f"no value set for {', '.join(missing)}"
        )
    if not isinstance(config.options, typing.Mapping):
        raise ConfigError(f"sync rule (index {rule_index}): 'options' expects a mapping")
    if mistyped := [key for key in SERVER_FIELDS
                    if not has_expected_type(key, getattr(config, key))]:
        raise ConfigError(
            f"sync rule (index {rule_index}): invalid LDAP configuration: "
            f"wrong type for {', '.join(mistyped)}"
        )


def _to_int(value: typing.Any) -> int:
    # JSON only knows string keys; allows e.g. "0x6006"
    return int(value, 0) if isinstance(value, str) else int(value)


def _normalize_options(
    options: typing.Mapping[typing.Any, typing.Any], rule_index: str
) -> dict[int, int]:
    try:
        return {_to_int(key): _to_int(value) for key, value in options.items()}
    except (TypeError, ValueError) as e:
        raise ConfigError(
            f"sync rule (index {rule_index}): LDAP options must map integers to integers"
        ) from e
