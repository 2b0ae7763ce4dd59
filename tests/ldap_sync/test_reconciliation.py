#  Copyright (c) 2024. The ldap-sync Authors. See the AUTHORS file.
#  This file is part of the ldap-sync project and licensed under the terms of
#  the Apache License, Version 2.0. See the LICENSE file for details
import dataclasses
from datetime import datetime

import pytest

from ldap_sync.concepts.outcome import Ambiguous, Created, Skipped, Updated
from ldap_sync.concepts.rules import ObjectRule, SyncRule
from ldap_sync.concepts.types import AttributeKind as K
from ldap_sync.exc import ConfigError
from ldap_sync.passwords import verify_password
from ldap_sync.placeholders import PlaceholderContext
from ldap_sync.reconciliation import Reconciler, validate_object_rules
from ldap_sync.targets.memory import ClassDef, MemoryObjectSet, MemoryObjectStore, MemorySchema


@pytest.fixture
def context(entry, attributes, now) -> PlaceholderContext:
    return PlaceholderContext.for_entry(entry, attributes, now=now)


def context_for(mail: str, attributes) -> PlaceholderContext:
    return PlaceholderContext.for_entry({'mail': mail, 'sn': 'Doe'}, attributes)


@pytest.mark.usefixtures('muted_ldap_logger')
class TestReconcile:
    def test_no_match_creates(self, reconciler, store, person_rule, context):
        outcome = reconciler.reconcile(person_rule, context, is_first=True)
        assert outcome == Created(1)
        assert store.get_record('Person', 1) == {'email': 'jdoe@x.com', 'name': 'Doe'}
        assert context.first_object_id == 1
        assert context.previous_object_id == 1

    def test_single_match_updates(self, reconciler, store, person_rule, context):
        key = store.add_record('Person', email='JDoe@x.com', name='Roe')
        outcome = reconciler.reconcile(person_rule, context, is_first=True)
        assert outcome == Updated(key, changed=True)
        assert store.get_record('Person', key) == {'email': 'jdoe@x.com', 'name': 'Doe'}
        assert store.insert_calls == 0
        assert context.previous_object_id == key

    def test_multiple_matches_are_ambiguous(self, reconciler, store, person_rule, context):
        first = store.add_record('Person', email='jdoe@x.com', name='Roe')
        second = store.add_record('Person', email='JDOE@X.COM', name='Poe')
        outcome = reconciler.reconcile(person_rule, context, is_first=True)
        assert outcome == Ambiguous(2)
        assert store.get_record('Person', first)['name'] == 'Roe'
        assert store.get_record('Person', second)['name'] == 'Poe'
        assert (store.insert_calls, store.update_calls) == (0, 0)
        assert context.first_object_id == -1
        assert context.previous_object_id == -1

    def test_second_run_changes_nothing(self, reconciler, store, person_rule, entry, attributes):
        first = reconciler.reconcile(
            person_rule, PlaceholderContext.for_entry(entry, attributes), is_first=True
        )
        second = reconciler.reconcile(
            person_rule, PlaceholderContext.for_entry(entry, attributes), is_first=True
        )
        assert first == Created(1)
        assert second == Updated(1, changed=False)
        assert (store.insert_calls, store.update_calls) == (1, 0)

    def test_previous_id_is_kept_apart_from_first(self, reconciler, person_rule, context):
        context.first_object_id = 42
        reconciler.reconcile(person_rule, context, is_first=False)
        assert context.first_object_id == 42
        assert context.previous_object_id == 1


@pytest.mark.usefixtures('muted_ldap_logger')
class TestDisabledActions:
    def test_create_disabled(self, reconciler, store, person_rule, context):
        rule = dataclasses.replace(person_rule, create=None)
        outcome = reconciler.reconcile(rule, context, is_first=True)
        assert outcome == Skipped(None, "create disabled")
        assert context.previous_object_id == -1
        assert store.insert_calls == 0

    def test_update_disabled_keeps_the_id(self, reconciler, store, person_rule, context):
        key = store.add_record('Person', email='jdoe@x.com', name='Roe')
        rule = dataclasses.replace(person_rule, update=False)
        outcome = reconciler.reconcile(rule, context, is_first=True)
        assert outcome == Skipped(key, "update disabled")
        assert context.previous_object_id == key
        assert store.get_record('Person', key)['name'] == 'Roe'


@pytest.mark.usefixtures('muted_ldap_logger')
class TestSimulation:
    @pytest.fixture
    def reconciler(self, store, schema) -> Reconciler:
        return Reconciler(store, schema, simulate=True)

    def test_fictional_ids(self, reconciler, store, person_rule, attributes):
        outcomes = [
            reconciler.reconcile(person_rule, context_for(mail, attributes), is_first=True)
            for mail in ('a@x.com', 'b@x.com')
        ]
        assert outcomes == [Created(-101), Created(-102)]
        assert store.insert_calls == 0
        assert store.records['Person'] == {}

    def test_fictional_ids_are_per_reconciler(self, store, schema, person_rule, attributes):
        for _ in range(2):
            reconciler = Reconciler(store, schema, simulate=True)
            outcome = reconciler.reconcile(person_rule, context_for('a@x.com', attributes), True)
            assert outcome == Created(-101)

    def test_update_is_reported_but_not_written(self, reconciler, store, person_rule, context):
        key = store.add_record('Person', email='jdoe@x.com', name='Roe')
        outcome = reconciler.reconcile(person_rule, context, is_first=True)
        assert outcome == Updated(key, changed=True)
        assert store.get_record('Person', key)['name'] == 'Roe'
        assert store.update_calls == 0


@pytest.mark.usefixtures('muted_ldap_logger')
class TestFailures:
    @pytest.mark.parametrize("reconcile_on", [
        'SELECT Person WHERE',
        'SELECT Person WHERE nickname = "x"',
        'SELECT Robot WHERE email = "$ldap_object->mail$"',
    ])
    def test_invalid_query(self, reconciler, person_rule, context, reconcile_on):
        rule = dataclasses.replace(person_rule, reconcile_on=reconcile_on)
        outcome = reconciler.reconcile(rule, context, is_first=True)
        assert isinstance(outcome, Skipped)
        assert outcome.object_id is None
        assert outcome.reason.startswith("invalid query")

    def test_conversion_failure_on_create(self, reconciler, store, person_rule, context):
        rule = dataclasses.replace(person_rule, attributes={
            **person_rule.attributes, 'employee_number': '$ldap_object->sn$',
        })
        outcome = reconciler.reconcile(rule, context, is_first=True)
        assert isinstance(outcome, Skipped)
        assert outcome.reason.startswith("create failed")
        assert store.insert_calls == 0

    def test_conversion_failure_on_update(self, reconciler, store, person_rule, context):
        key = store.add_record('Person', email='jdoe@x.com', name='Roe')
        rule = dataclasses.replace(person_rule, attributes={
            **person_rule.attributes, 'hired': '$ldap_object->sn$',
        })
        outcome = reconciler.reconcile(rule, context, is_first=True)
        assert isinstance(outcome, Skipped)
        assert outcome.object_id == key
        # nothing is set before every value has been converted
        assert store.get_record('Person', key)['name'] == 'Roe'

    def test_single_match_without_object(self, reconciler, store, person_rule, context,
                                         monkeypatch):
        store.add_record('Person', email='jdoe@x.com', name='Roe')
        monkeypatch.setattr(MemoryObjectSet, 'fetch', lambda self: None)
        outcome = reconciler.reconcile(person_rule, context, is_first=True)
        assert outcome == Skipped(None, "matched object vanished")
        assert (store.insert_calls, store.update_calls) == (0, 0)
        assert context.previous_object_id == -1

    def test_missing_mandatory_attribute(self, reconciler, store, person_rule, context):
        rule = dataclasses.replace(person_rule, attributes={'email': '$ldap_object->mail$'})
        outcome = reconciler.reconcile(rule, context, is_first=True)
        assert isinstance(outcome, Skipped)
        assert "name" in outcome.reason
        assert context.previous_object_id == -1


@pytest.mark.usefixtures('muted_ldap_logger')
class TestAttributeKinds:
    def test_typed_values(self, reconciler, store, person_rule, context):
        rule = dataclasses.replace(person_rule, attributes={
            **person_rule.attributes,
            'employee_number': '4711',
            'salary': '1234.50',
            'hired': '$current_datetime$',
            'org_id': '',
        })
        outcome = reconciler.reconcile(rule, context, is_first=True)
        record = store.get_record('Person', outcome.object_id)
        assert record['employee_number'] == 4711
        assert str(record['salary']) == '1234.50'
        assert record['hired'] == datetime(2024, 3, 1, 12, 30)
        assert record['org_id'] is None

    def test_unknown_and_unsupported_attributes_are_skipped(
        self, reconciler, store, person_rule, context
    ):
        rule = dataclasses.replace(person_rule, attributes={
            **person_rule.attributes, 'nickname': 'JD', 'photo': 'binary',
        })
        outcome = reconciler.reconcile(rule, context, is_first=True)
        assert outcome == Created(1)
        assert store.get_record('Person', 1) == {'email': 'jdoe@x.com', 'name': 'Doe'}

    def test_linked_set(self, reconciler, store, person_rule, context):
        rule = dataclasses.replace(person_rule, attributes={
            **person_rule.attributes,
            'memberships': [
                {'role': 'member', 'since': '$current_datetime$'},
                {'role': '$ldap_object->givenname$'},
            ],
        })
        outcome = reconciler.reconcile(rule, context, is_first=True)
        assert outcome == Created(1)
        assert list(store.records['Membership'].values()) == [
            {'role': 'member', 'since': datetime(2024, 3, 1, 12, 30), 'person_id': 1},
            {'role': 'Jane', 'person_id': 1},
        ]
        assert store.insert_calls == 3

    def test_linked_set_with_invalid_member(self, reconciler, store, person_rule, context):
        rule = dataclasses.replace(person_rule, attributes={
            **person_rule.attributes, 'memberships': [{'since': '$current_datetime$'}],
        })
        outcome = reconciler.reconcile(rule, context, is_first=True)
        assert isinstance(outcome, Skipped)
        assert "role" in outcome.reason
        assert store.records['Person'] == {}

    def test_malformed_linked_set_is_ignored(self, reconciler, store, person_rule, context):
        rule = dataclasses.replace(person_rule, attributes={
            **person_rule.attributes, 'memberships': 'member',
        })
        assert reconciler.reconcile(rule, context, is_first=True) == Created(1)
        assert store.records['Membership'] == {}

    def test_linked_sets_are_not_updated(self, reconciler, store, person_rule, context):
        key = store.add_record('Person', email='jdoe@x.com', name='Doe')
        rule = dataclasses.replace(person_rule, attributes={
            **person_rule.attributes, 'memberships': [{'role': 'member'}],
        })
        assert reconciler.reconcile(rule, context, is_first=True) == Updated(key, changed=False)
        assert store.records['Membership'] == {}


@pytest.mark.usefixtures('muted_ldap_logger')
class TestPasswords:
    @pytest.fixture(scope='class')
    def schema(self) -> MemorySchema:
        return MemorySchema({'Account': ClassDef(
            attributes={'login': K.STRING, 'password': K.ONE_WAY_PASSWORD},
        )})

    @pytest.fixture(scope='class')
    def rule(self) -> ObjectRule:
        return ObjectRule(
            target_class='Account',
            attributes={'login': '$ldap_object->sn$', 'password': '$ldap_object->mail$'},
            reconcile_on="SELECT Account WHERE login = '$ldap_object->sn$'",
            create=True,
            update=True,
        )

    def test_password_is_hashed_and_compared(self, schema, rule, entry, attributes):
        store = MemoryObjectStore(schema)
        reconciler = Reconciler(store, schema)
        context = PlaceholderContext.for_entry(entry, attributes)
        assert reconciler.reconcile(rule, context, is_first=True) == Created(1)
        stored = store.get_record('Account', 1)['password']
        assert stored != 'jdoe@x.com'
        assert verify_password('jdoe@x.com', stored)
        assert reconciler.reconcile(rule, context, is_first=True) == Updated(1, changed=False)


class TestValidateObjectRules:
    @staticmethod
    def sync_rule(**object_rule) -> SyncRule:
        defaults = {
            'target_class': 'Person',
            'reconcile_on': 'SELECT Person WHERE email = "$ldap_object->mail$"',
            'attributes': {'email': '$ldap_object->mail$'},
        }
        return SyncRule(name='0', objects={'0': ObjectRule(**{**defaults, **object_rule})})

    def test_valid(self, schema):
        validate_object_rules(self.sync_rule(), schema)

    def test_no_object_rules(self, schema):
        validate_object_rules(SyncRule(name='0'), schema)

    @pytest.mark.parametrize("object_rule, message", [
        ({'reconcile_on': None}, "no 'reconcile_on' specified"),
        ({'target_class': None}, "'class' not defined"),
        ({'reconcile_on': 'Person'}, "invalid 'reconcile_on'"),
        ({'reconcile_on': 'SELECT Robot'}, "unknown class Robot"),
        ({'target_class': 'Robot'}, "unknown class Robot"),
        ({'attributes': {'email': 'x', 'nickname': 'x'}},
         "invalid attribute.s. nickname for class Person"),
    ])
    def test_invalid(self, schema, object_rule, message):
        with pytest.raises(ConfigError, match=message):
            validate_object_rules(self.sync_rule(**object_rule), schema)

    def test_location_is_reported(self, schema):
        with pytest.raises(ConfigError, match="object index 0"):
            validate_object_rules(self.sync_rule(target_class=None), schema)
