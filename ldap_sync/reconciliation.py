#  Copyright (c) 2024. The ldap-sync Authors. See the AUTHORS file.
#  This file is part of the ldap-sync project and licensed under the terms of
#  the Apache License, Version 2.0. See the LICENSE file for details
"""
ldap_sync.reconciliation
~~~~~~~~~~~~~~~~~~~~~~~~

Matching the object described by an object rule against the store.

The substituted ``reconcile_on`` query decides what happens:

* no match: a new object is created (if ``create`` is true)
* exactly one match: the object is updated (if ``update`` is true)
* more than one match: nothing happens, the outcome is :class:`Ambiguous`
"""
from __future__ import annotations

import itertools
import logging
import typing

from .concepts.outcome import Ambiguous, Created, Outcome, Skipped, Updated
from .concepts.rules import ObjectRule, SyncRule
from .concepts.store import ObjectStore, SchemaProvider, StoredObject
from .concepts.types import AttributeKind
from .conversion import coerce_value, is_current
from .exc import ConfigError, PersistenceError, QueryError
from .oql import reconcile_class
from .placeholders import PlaceholderContext

logger = logging.getLogger('ldap_sync.reconciliation')

#: fictional ids of simulated creations count down from here, exclusively
FICTIONAL_ID_START = -100


class Reconciler:
    """Reconciles object rules for the entries of one sync rule.

    :param store: the store to search and write to
    :param schema: the schema of the store
    :param simulate: if true, nothing is written; created objects get
        a fictional id instead
    """

    def __init__(self, store: ObjectStore, schema: SchemaProvider, simulate: bool = False) -> None:
        self.store = store
        self.schema = schema
        self.simulate = simulate
        self._fictional_ids = itertools.count(FICTIONAL_ID_START - 1, -1)

    def next_fictional_id(self) -> int:
        return next(self._fictional_ids)

    def reconcile(self, rule: ObjectRule, context: PlaceholderContext, is_first: bool) -> Outcome:
        """Reconcile :paramref:`rule` and record the resulting object id in
        :paramref:`context`.

        ``previous_object->id`` is always set, ``first_object->id`` only
        if :paramref:`is_first`.  Both are ``-1`` if there is no object to
        refer to.
        """
        outcome = self._reconcile(rule, context)
        context.previous_object_id = outcome.reference_id
        if is_first:
            context.first_object_id = outcome.reference_id
        return outcome

    def _reconcile(self, rule: ObjectRule, context: PlaceholderContext) -> Outcome:
        query = context.substitute(rule.reconcile_on)
        logger.debug("Reconcile query: %s", query)
        try:
            found = self.store.search(query)
        except QueryError as e:
            logger.warning("Unable to execute reconcile query %r: %s", query, e)
            return Skipped(None, f"invalid query: {e}")

        match found.count:
            case 0:
                return self._create(rule, context)
            case 1:
                if (obj := found.fetch()) is None:
                    logger.warning("Reconcile query %r matched an object which could not "
                                   "be fetched", query)
                    return Skipped(None, "matched object vanished")
                return self._update(rule, context, obj)
            case count:
                logger.info("Found %d %s objects, unable to reconcile", count, found.class_name)
                return Ambiguous(count)

    def _create(self, rule: ObjectRule, context: PlaceholderContext) -> Outcome:
        class_name = typing.cast(str, rule.target_class)
        if not rule.may_create:
            logger.info("Not creating %s because 'create' is not explicitly set to true",
                        class_name)
            return Skipped(None, "create disabled")

        logger.info("Create %s", class_name)
        try:
            obj = self._build(class_name, rule.attributes or {}, context)
            if self.simulate:
                key = self.next_fictional_id()
                logger.info("Simulating, no object will be created. Fictional id %d for %s",
                            key, class_name)
            else:
                key = obj.insert()
                logger.info("Created %s::%d", class_name, key)
        except PersistenceError as e:
            logger.warning("Unable to create a new %s: %s", class_name, e)
            return Skipped(None, f"create failed: {e}")
        return Created(key)

    def _build(
        self,
        class_name: str,
        assignments: typing.Mapping[str, typing.Any],
        context: PlaceholderContext,
        linked: bool = False,
    ) -> StoredObject:
        obj = self.store.new_object(class_name)
        kinds = self.schema.list_attribute_defs(class_name)
        for attribute, value in assignments.items():
            kind = kinds.get(attribute)
            match kind:
                case None:
                    logger.info("Invalid attribute code: %s", attribute)
                case (AttributeKind.DATETIME | AttributeKind.DECIMAL | AttributeKind.EXTERNAL_KEY
                      | AttributeKind.INTEGER | AttributeKind.ONE_WAY_PASSWORD
                      | AttributeKind.STRING):
                    desired = self._desired(kind, value, context)
                    if kind is not AttributeKind.ONE_WAY_PASSWORD:
                        logger.debug("%s (%s) => %r", attribute, kind.value, desired)
                    obj.set(attribute, desired)
                case AttributeKind.LINKED_SET | AttributeKind.LINKED_SET_INDIRECT if not linked:
                    self._build_linked_set(obj, attribute, value, context)
                case (AttributeKind.LINKED_SET | AttributeKind.LINKED_SET_INDIRECT
                      | AttributeKind.OTHER):
                    logger.info("%s (%s) not supported%s", attribute, kind.value,
                                " at this level" if linked else "")
                case _:
                    typing.assert_never(kind)
        return obj

    def _build_linked_set(
        self,
        obj: StoredObject,
        attribute: str,
        value: typing.Any,
        context: PlaceholderContext,
    ) -> None:
        if not isinstance(value, list) or not all(isinstance(v, typing.Mapping) for v in value):
            logger.info("%s expects a list of linked objects, skipping", attribute)
            return
        linked_class = self.schema.get_linked_class(obj.class_name, attribute)
        logger.info("%s: linked class %s, %d linked objects", attribute, linked_class, len(value))
        for assignments in value:
            obj.add_linked(attribute, self._build(linked_class, assignments, context, linked=True))

    @staticmethod
    def _desired(kind: AttributeKind, template: typing.Any, context: PlaceholderContext) -> typing.Any:
        return coerce_value(kind, context.substitute(template))

    def _update(self, rule: ObjectRule, context: PlaceholderContext, obj: StoredObject) -> Outcome:
        key = typing.cast(int, obj.key)
        name = f"{obj.class_name}::{key}"
        if not rule.may_update:
            logger.info("Not updating %s because 'update' is not explicitly set to true", name)
            return Skipped(key, "update disabled")

        logger.info("Update %s", name)
        kinds = self.schema.list_attribute_defs(obj.class_name)
        try:
            changes = self._changes(obj, kinds, rule.attributes or {}, context)
            if not changes:
                logger.info("%s was already synced", name)
                return Updated(key, changed=False)
            logger.debug("Changed attributes of %s: %s", name, ", ".join(changes))
            if self.simulate:
                logger.info("Simulating, %s will not really be updated", name)
            else:
                for attribute, desired in changes.items():
                    obj.set(attribute, desired)
                obj.update()
                logger.info("%s updated", name)
        except PersistenceError as e:
            logger.warning("Unable to update %s: %s", name, e)
            return Skipped(key, f"update failed: {e}")
        return Updated(key, changed=True)

    def _changes(
        self,
        obj: StoredObject,
        kinds: typing.Mapping[str, AttributeKind],
        assignments: typing.Mapping[str, typing.Any],
        context: PlaceholderContext,
    ) -> dict[str, typing.Any]:
        # all values are converted before the first one is set
        changes = {}
        for attribute, value in assignments.items():
            kind = kinds.get(attribute)
            match kind:
                case (AttributeKind.DATETIME | AttributeKind.DECIMAL | AttributeKind.EXTERNAL_KEY
                      | AttributeKind.INTEGER | AttributeKind.ONE_WAY_PASSWORD
                      | AttributeKind.STRING):
                    desired = self._desired(kind, value, context)
                    if not is_current(kind, obj.get(attribute), desired):
                        changes[attribute] = desired
                case None:
                    logger.info("Invalid attribute code: %s", attribute)
                case (AttributeKind.LINKED_SET | AttributeKind.LINKED_SET_INDIRECT
                      | AttributeKind.OTHER):
                    logger.info("%s (%s) cannot be updated", attribute, kind.value)
                case _:
                    typing.assert_never(kind)
        return changes


def validate_object_rules(rule: SyncRule, schema: SchemaProvider) -> None:
    """Check the object rules of :paramref:`rule` before connecting to any server.

    :raises ConfigError: if an object rule lacks its class or reconcile query,
        or refers to a class or attributes the schema does not know
    """
    for index, object_rule in rule.object_rules():
        where = f"sync rule (index {rule.name}), object index {index}"
        if object_rule.reconcile_on is None:
            raise ConfigError(f"{where}: no 'reconcile_on' specified")
        if object_rule.target_class is None:
            raise ConfigError(f"{where}: 'class' not defined")
        class_name = reconcile_class(object_rule.reconcile_on)
        if class_name is None:
            raise ConfigError(f"{where}: invalid 'reconcile_on'")
        if not schema.is_valid_class(class_name):
            raise ConfigError(f"{where}: invalid 'reconcile_on', unknown class {class_name}")
        if not schema.is_valid_class(object_rule.target_class):
            raise ConfigError(f"{where}: unknown class {object_rule.target_class}")
        valid = schema.get_attributes_list(class_name)
        if invalid := [a for a in (object_rule.attributes or {}) if a not in valid]:
            raise ConfigError(
                f"{where}: invalid attribute(s) {', '.join(invalid)} for class {class_name}"
            )
