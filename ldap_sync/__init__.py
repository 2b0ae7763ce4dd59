"""
This package provides a standalone, rule-driven LDAP → object store syncer.
For more information on how to execute it, run ``python -m ldap_sync --help``.

The process is separated into the following steps:

1. Resolve the LDAP server configuration of each sync rule
   (:mod:`ldap_sync.resolution`)
2. Fetch the entries matching the rule's query from the directory
   (:mod:`ldap_sync.sources.ldap`)
3. Run the rule's chain of object rules for every entry
   (:mod:`ldap_sync.chain`)
4. Reconcile every object against the object store
   (:mod:`ldap_sync.reconciliation`)
"""
import logging

logger = logging.getLogger('ldap_sync')
