#  Copyright (c) 2024. The ldap-sync Authors. See the AUTHORS file.
#  This file is part of the ldap-sync project and licensed under the terms of
#  the Apache License, Version 2.0. See the LICENSE file for details
import logging
from datetime import datetime

import pytest

from ldap_sync.concepts.rules import ObjectRule, ServerConfig
from ldap_sync.concepts.types import AttributeKind as K
from ldap_sync.targets.memory import ClassDef, MemoryObjectStore, MemorySchema
from ldap_sync.reconciliation import Reconciler


@pytest.fixture(scope="class")
def muted_ldap_logger():
    logging.getLogger("ldap_sync").addHandler(logging.NullHandler())


@pytest.fixture(scope="session")
def schema() -> MemorySchema:
    return MemorySchema({
        'Organization': ClassDef(
            attributes={'name': K.STRING, 'code': K.STRING},
            mandatory=frozenset({'name'}),
        ),
        'Person': ClassDef(
            attributes={
                'name': K.STRING,
                'first_name': K.STRING,
                'email': K.STRING,
                'org_id': K.EXTERNAL_KEY,
                'employee_number': K.INTEGER,
                'salary': K.DECIMAL,
                'hired': K.DATETIME,
                'photo': K.OTHER,
                'memberships': K.LINKED_SET,
            },
            mandatory=frozenset({'name'}),
            links={'memberships': ('Membership', 'person_id')},
        ),
        'Membership': ClassDef(
            attributes={'person_id': K.EXTERNAL_KEY, 'role': K.STRING, 'since': K.DATETIME},
            mandatory=frozenset({'person_id', 'role'}),
        ),
    })


@pytest.fixture
def store(schema) -> MemoryObjectStore:
    return MemoryObjectStore(schema)


@pytest.fixture
def reconciler(store, schema) -> Reconciler:
    return Reconciler(store, schema)


@pytest.fixture(scope="session")
def entry() -> dict[str, str]:
    return {'mail': 'jdoe@x.com', 'sn': 'Doe', 'givenname': 'Jane'}


@pytest.fixture(scope="session")
def attributes() -> list[str]:
    return ['mail', 'sn', 'givenname']


@pytest.fixture(scope="session")
def now() -> datetime:
    return datetime(2024, 3, 1, 12, 30)


@pytest.fixture
def person_rule() -> ObjectRule:
    return ObjectRule(
        target_class='Person',
        attributes={'email': '$ldap_object->mail$', 'name': '$ldap_object->sn$'},
        reconcile_on='SELECT Person WHERE email LIKE "$ldap_object->mail$"',
        create=True,
        update=True,
    )


@pytest.fixture(scope="session")
def server() -> ServerConfig:
    return ServerConfig(
        host='dc1.example.org',
        port=389,
        bind_dn='cn=sync,dc=example,dc=org',
        bind_password='secret',
        base_dn='dc=example,dc=org',
        start_tls=False,
        options={},
    )
