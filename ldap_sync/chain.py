#  Copyright (c) 2024. The ldap-sync Authors. See the AUTHORS file.
#  This file is part of the ldap-sync project and licensed under the terms of
#  the Apache License, Version 2.0. See the LICENSE file for details
"""
ldap_sync.chain
~~~~~~~~~~~~~~~

Running the object rules of a sync rule for a single directory entry.

The rules are evaluated in order.  Later rules may refer to the objects of
earlier ones via ``$first_object->id$`` and ``$previous_object->id$``.
Once one of those is ``-1``, the remaining rules are skipped.
"""
from __future__ import annotations

from datetime import datetime

import simplejson

from . import logger
from .concepts.outcome import Outcome
from .concepts.rules import ServerConfig, SyncRule
from .concepts.types import DirectoryEntry
from .placeholders import NO_OBJECT, PlaceholderContext
from .reconciliation import Reconciler


def process_entry(
    rule: SyncRule,
    entry: DirectoryEntry,
    server: ServerConfig,
    reconciler: Reconciler,
    now: datetime | None = None,
) -> list[tuple[str, Outcome]]:
    """Apply the object rules of :paramref:`rule` to :paramref:`entry`.

    :param rule: the (merged) sync rule
    :param entry: the normalized directory entry
    :param server: the server the entry has been fetched from, for its placeholders
    :param reconciler: the reconciler of the current sync rule
    :param now: the value of ``$current_datetime$``

    :returns: the outcome of every evaluated object rule, by object rule name
    """
    context = PlaceholderContext.for_entry(
        entry,
        rule.ldap_attributes or [],
        server_placeholders=server.server_specific_placeholders,
        now=now,
    )
    logger.debug("Entry: %s", simplejson.dumps(entry))
    object_rules = rule.object_rules()
    outcomes: list[tuple[str, Outcome]] = []
    for position, (name, object_rule) in enumerate(object_rules):
        logger.info("Object rule %r", name)
        outcome = reconciler.reconcile(object_rule, context, is_first=position == 0)
        outcomes.append((name, outcome))

        if position + 1 < len(object_rules) and NO_OBJECT in (
            context.first_object_id, context.previous_object_id
        ):
            logger.info("No valid object to refer to (%s), skipping the remaining %d object rule(s)",
                        type(outcome).__name__, len(object_rules) - position - 1)
            break
    return outcomes

