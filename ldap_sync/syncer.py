#  Copyright (c) 2024. The ldap-sync Authors. See the AUTHORS file.
#  This file is part of the ldap-sync project and licensed under the terms of
#  the Apache License, Version 2.0. See the LICENSE file for details
"""
ldap_sync.syncer
~~~~~~~~~~~~~~~~

The top level of a synchronization run.

Failures are contained at the narrowest possible scope:

* a failing object rule is reported as :class:`~ldap_sync.concepts.outcome.Skipped`
* a failing server is skipped, the other servers of the rule are still processed
* a failing sync rule is logged, the run continues with the next rule
"""
from __future__ import annotations

import collections
import dataclasses

from . import logger
from .chain import process_entry
from .concepts.outcome import Outcome
from .concepts.rules import ServerConfig, SyncRule
from .concepts.store import ObjectStore, SchemaProvider
from .config import Settings
from .exc import ConfigError, DirectoryError, SyncError
from .ldap import DirectoryClient, ignore_tls_certificates
from .reconciliation import Reconciler, validate_object_rules
from .resolution import resolve_server_config
from .sources.ldap import query_directory


@dataclasses.dataclass
class RuleReport:
    name: str | None
    failed: bool = False
    entries: int = 0
    #: outcome type name (``Created``, ``Updated``, …) → number of occurrences
    outcomes: collections.Counter[str] = dataclasses.field(default_factory=collections.Counter)
    failed_servers: list[str] = dataclasses.field(default_factory=list)

    def record(self, outcome: Outcome) -> None:
        self.outcomes[type(outcome).__name__] += 1


@dataclasses.dataclass
class SyncReport:
    rules: list[RuleReport] = dataclasses.field(default_factory=list)

    @property
    def failed_rules(self) -> list[str | None]:
        return [rule.name for rule in self.rules if rule.failed]

    def totals(self) -> collections.Counter[str]:
        return sum((rule.outcomes for rule in self.rules), collections.Counter())


def run_synchronization(
    settings: Settings,
    store: ObjectStore,
    schema: SchemaProvider,
    client: DirectoryClient,
    time_limit: float | None = None,
) -> SyncReport:
    """Process every sync rule of :paramref:`settings`.

    TLS certificates are not validated during the run (see
    :func:`~ldap_sync.ldap.ignore_tls_certificates`) unless a server sets
    the ``X_TLS_REQUIRE_CERT`` option itself.

    :param time_limit: the time budget granted by the scheduler.  It is
        informational only, the run is not interrupted.

    :returns: a summary of the run.  Failing rules do not raise.
    """
    logger.info("Starting synchronization")
    if time_limit is not None:
        logger.debug("Time limit: %ss (not enforced)", time_limit)
    report = SyncReport()

    with ignore_tls_certificates():
        for rule in settings.iter_sync_rules():
            rule_report = RuleReport(name=rule.name)
            report.rules.append(rule_report)
            try:
                process_sync_rule(rule, settings, store, schema, client, rule_report)
            except SyncError as e:
                rule_report.failed = True
                logger.error("Sync rule %r failed: %s", rule.name, e)
            except Exception:
                rule_report.failed = True
                logger.exception("Unexpected error while processing sync rule %r", rule.name)

    totals = report.totals()
    logger.info("Finished synchronization: %s",
                ", ".join(f"{count} {kind}" for kind, count in sorted(totals.items())) or "nothing done")
    return report


def process_sync_rule(
    rule: SyncRule,
    settings: Settings,
    store: ObjectStore,
    schema: SchemaProvider,
    client: DirectoryClient,
    report: RuleReport | None = None,
) -> RuleReport:
    """Process one (merged) sync rule.

    The rule is validated completely before the first connection is made.

    :raises ConfigError: if the rule or one of its server configurations is invalid
    """
    report = report if report is not None else RuleReport(name=rule.name)
    logger.info("%s Sync rule %r", "=" * 25, rule.name)

    if rule.ldap_query is None:
        raise ConfigError(f"sync rule (index {rule.name}): 'ldap_query' not specified")
    if rule.ldap_attributes is None:
        raise ConfigError(f"sync rule (index {rule.name}): 'ldap_attributes' not specified")
    validate_object_rules(rule, schema)
    servers: list[tuple[str, ServerConfig]] = [
        (name, resolve_server_config(partial, f"{rule.name}, server {name}", settings))
        for name, partial in rule.iter_servers()
    ]

    reconciler = Reconciler(store, schema, simulate=rule.is_simulation)
    if rule.is_simulation:
        logger.info("Simulating, the object store will not be modified")
    object_rule_count = len(rule.object_rules())

    for name, server in servers:
        logger.info("Process LDAP configuration %s", name)
        try:
            entries = query_directory(client, server, rule.ldap_query, rule.ldap_attributes)
        except DirectoryError as e:
            logger.error("sync rule (index %s): skipping LDAP configuration %s: %s",
                         rule.name, name, e)
            report.failed_servers.append(name)
            continue

        logger.info("Found %d LDAP object(s), for each %d object(s) should be created or updated",
                    len(entries), object_rule_count)
        report.entries += len(entries)
        for entry in entries:
            for _, outcome in process_entry(rule, entry, server, reconciler):
                report.record(outcome)
    return report

