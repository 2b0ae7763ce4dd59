#  Copyright (c) 2024. The ldap-sync Authors. See the AUTHORS file.
#  This file is part of the ldap-sync project and licensed under the terms of
#  the Apache License, Version 2.0. See the LICENSE file for details
"""
ldap_sync.config
~~~~~~~~~~~~~~~~

The configuration file is a JSON document keyed by module name, e.g.

.. code-block:: json

    {
      "ldap_sync": {
        "trace_log": true,
        "ldap_config_source": "authent-ldap",
        "default_sync_rule": {"config_name": "default", "ldap_attributes": ["mail"]},
        "sync_rules": [{"ldap_query": "(objectClass=user)", "objects": []}]
      },
      "authent-ldap": {"host": "dc1.example.org", "port": 389}
    }

Besides our own section, the sections of the modules we can borrow
LDAP server configurations from (see :mod:`ldap_sync.resolution`) live there.
"""
from __future__ import annotations

import os
import typing

import jsonschema
import simplejson

from . import logger
from .concepts.rules import SyncRule, merge_layers
from .exc import ConfigError

MODULE_NAME = 'ldap_sync'

_object_rule_schema = {
    "type": "object",
    "properties": {
        "class": {"type": "string"},
        "attributes": {"type": "object"},
        "reconcile_on": {"type": "string"},
        "create": {"type": "boolean"},
        "update": {"type": "boolean"},
    },
}

_sync_rule_schema = {
    "type": "object",
    "properties": {
        "ldap_servers": {"type": "object", "additionalProperties": {"type": "object"}},
        "ldap_query": {"type": "string"},
        "ldap_attributes": {"type": "array", "items": {"type": "string"}},
        "objects": {
            "oneOf": [
                {"type": "array", "items": _object_rule_schema},
                {"type": "object", "additionalProperties": _object_rule_schema},
            ]
        },
        "simulate": {"type": "boolean"},
        "config_name": {"type": "string"},
        "ldap_specific_placeholders": {"type": "object"},
    },
}

schema = {
    "type": "object",
    "properties": {
        MODULE_NAME: {
            "type": "object",
            "properties": {
                "trace_log": {"type": "boolean"},
                "ldap_config_source": {"type": "string"},
                "servers": {"type": "object"},
                "default_sync_rule": _sync_rule_schema,
                "sync_rules": {
                    "oneOf": [
                        {"type": "array", "items": _sync_rule_schema},
                        {"type": "object", "additionalProperties": _sync_rule_schema},
                    ]
                },
            },
        },
    },
    "additionalProperties": {"type": "object"},
}


class Settings:
    """Read-only access to the module settings of a configuration document."""

    def __init__(self, modules: typing.Mapping[str, typing.Mapping[str, typing.Any]]) -> None:
        try:
            jsonschema.validate(modules, schema)
        except jsonschema.ValidationError as e:
            path = "/".join(str(p) for p in e.absolute_path)
            raise ConfigError(f"Invalid configuration at '{path}': {e.message}") from e
        self._modules = modules

    def get_module_setting(self, module: str, key: str, default: typing.Any = None) -> typing.Any:
        return self._modules.get(module, {}).get(key, default)

    def get(self, key: str, default: typing.Any = None) -> typing.Any:
        return self.get_module_setting(MODULE_NAME, key, default)

    @property
    def trace_log(self) -> bool:
        return self.get('trace_log', False) is True

    @property
    def ldap_config_source(self) -> str:
        return self.get('ldap_config_source', 'authent-ldap')

    def default_sync_rule(self) -> SyncRule:
        return SyncRule.from_mapping(self.get('default_sync_rule', {}))

    def iter_sync_rules(self) -> typing.Iterator[SyncRule]:
        """Yield the sync rules, each merged on top of the default sync rule."""
        raw_rules = self.get('sync_rules', [])
        if isinstance(raw_rules, list):
            raw_rules = dict(enumerate(raw_rules))
        default = self.default_sync_rule()
        for name, raw_rule in raw_rules.items():
            yield merge_layers(default, SyncRule.from_mapping(raw_rule, name=str(name)))

    def with_simulation(self) -> Settings:
        """Return settings where every sync rule is a simulation."""
        ours = dict(self._modules.get(MODULE_NAME, {}))
        default = dict(ours.get('default_sync_rule', {}))
        default['simulate'] = True
        ours['default_sync_rule'] = default
        rules = ours.get('sync_rules', [])
        if isinstance(rules, list):
            ours['sync_rules'] = [{**rule, 'simulate': True} for rule in rules]
        else:
            ours['sync_rules'] = {name: {**rule, 'simulate': True} for name, rule in rules.items()}
        return Settings({**self._modules, MODULE_NAME: ours})


def load_settings(path: str | os.PathLike[str]) -> Settings:
    try:
        with open(path, encoding='utf-8') as f:
            modules = simplejson.load(f)
    except OSError as e:
        raise ConfigError(f"Cannot read configuration file {path}: {e.strerror}") from e
    except simplejson.JSONDecodeError as e:
        raise ConfigError(f"Configuration file {path} is not valid JSON: {e}") from e
    return Settings(modules)


def get_settings_or_exit(path: str | None = None) -> Settings:
    """Load the settings from :paramref:`path` or ``$LDAP_SYNC_CONFIG``.

    Exits the process if the settings are unusable.
    """
    if path is None:
        try:
            path = os.environ['LDAP_SYNC_CONFIG']
        except KeyError:
            logger.critical("LDAP_SYNC_CONFIG not set, quitting")
            exit(2)
    try:
        return load_settings(path)
    except ConfigError as e:
        logger.critical("%s, quitting", e)
        exit(2)
