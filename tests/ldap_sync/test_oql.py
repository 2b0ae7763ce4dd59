#  Copyright (c) 2024. The ldap-sync Authors. See the AUTHORS file.
#  This file is part of the ldap-sync project and licensed under the terms of
#  the Apache License, Version 2.0. See the LICENSE file for details
import decimal

import pytest

from ldap_sync.exc import QueryError
from ldap_sync.oql import (
    BooleanOperation,
    Comparison,
    Not,
    Query,
    evaluate,
    parse_query,
    reconcile_class,
    referenced_attributes,
)


class TestParse:
    def test_class_only(self):
        assert parse_query("SELECT Person") == Query('Person')

    def test_like(self):
        assert parse_query('SELECT Person WHERE email LIKE "jdoe@x.com"') == Query(
            'Person', Comparison('email', 'LIKE', 'jdoe@x.com')
        )

    def test_keywords_are_case_insensitive(self):
        assert parse_query("select Person where name like 'Doe'") == Query(
            'Person', Comparison('name', 'LIKE', 'Doe')
        )

    def test_qualified_attributes(self):
        query = parse_query("SELECT Person AS p WHERE p.name = 'Doe' AND Person.org_id = 3")
        assert query.condition == BooleanOperation('AND', (
            Comparison('name', '=', 'Doe'),
            Comparison('org_id', '=', 3),
        ))

    def test_and_binds_tighter_than_or(self):
        query = parse_query("SELECT Person WHERE a = 1 OR b = 2 AND c = 3")
        assert query.condition == BooleanOperation('OR', (
            Comparison('a', '=', 1),
            BooleanOperation('AND', (Comparison('b', '=', 2), Comparison('c', '=', 3))),
        ))

    def test_parentheses(self):
        query = parse_query("SELECT Person WHERE (a = 1 OR b = 2) AND c = 3")
        assert query.condition == BooleanOperation('AND', (
            BooleanOperation('OR', (Comparison('a', '=', 1), Comparison('b', '=', 2))),
            Comparison('c', '=', 3),
        ))

    def test_not(self):
        query = parse_query("SELECT Person WHERE NOT name NOT LIKE 'D%'")
        assert query.condition == Not(Comparison('name', 'NOT LIKE', 'D%'))

    @pytest.mark.parametrize("literal, expected", [
        ("-1", -1),
        ("42", 42),
        ("3.50", decimal.Decimal("3.50")),
        ("'it\\'s'", "it's"),
        ('"say \\"hi\\""', 'say "hi"'),
        ("''", ""),
    ])
    def test_literals(self, literal, expected):
        query = parse_query(f"SELECT Person WHERE a = {literal}")
        assert query.condition == Comparison('a', '=', expected)

    def test_not_equal_spellings(self):
        assert parse_query("SELECT P WHERE a <> 1") == parse_query("SELECT P WHERE a != 1")

    @pytest.mark.parametrize("text", [
        "",
        "Person",
        "SELECT",
        "SELECT Person WHERE",
        "SELECT Person WHERE name",
        "SELECT Person WHERE name = ",
        "SELECT Person WHERE name = 'Doe",
        "SELECT Person WHERE name = Doe",
        "SELECT Person WHERE (name = 'Doe'",
        "SELECT Person WHERE name = 'Doe' garbage",
        "SELECT Person WHERE x.name = 'Doe'",
        "SELECT Person WHERE name ~ 'Doe'",
        "SELECT Person WHERE email LIKE \"$ldap_object->mail$\" AND",
    ])
    def test_invalid(self, text):
        with pytest.raises(QueryError):
            parse_query(text)


@pytest.mark.parametrize("template, expected", [
    ('SELECT Person WHERE email LIKE "$ldap_object->mail$"', 'Person'),
    ("SELECT lnkPersonToTeam WHERE person_id = $previous_object->id$", 'lnkPersonToTeam'),
    ("SELECT  Person", 'Person'),
    ("Person", None),
    ("select Person", None),
])
def test_reconcile_class(template, expected):
    assert reconcile_class(template) == expected


def test_referenced_attributes():
    query = parse_query("SELECT P WHERE a = 1 OR NOT (b = 2 AND c LIKE 'x')")
    assert list(referenced_attributes(query.condition)) == ['a', 'b', 'c']
    assert list(referenced_attributes(None)) == []


class TestEvaluate:
    @pytest.fixture(scope='class')
    def person(self) -> dict:
        return {'name': 'Doe', 'email': 'JDoe@X.com', 'org_id': 3, 'phone': None}

    @pytest.mark.parametrize("condition, expected", [
        ("email LIKE 'jdoe@x.com'", True),
        ("email LIKE 'jdoe@%'", True),
        ("email LIKE '%@y.com'", False),
        ("name LIKE 'D_e'", True),
        ("name LIKE 'D.e'", False),
        ("name NOT LIKE 'Roe'", True),
        ("name = 'Doe'", True),
        ("name = 'doe'", False),
        ("name != 'Doe'", False),
        ("org_id = 3", True),
        ("org_id = 3.0", True),
        ("org_id > 2 AND org_id <= 3", True),
        ("org_id < 3", False),
        ("org_id = '3'", True),
        ("phone = ''", False),
        ("phone != ''", False),
        ("phone NOT LIKE 'x'", False),
        ("NOT phone = ''", True),
        ("name = 'Roe' OR org_id = 3", True),
        ("(name = 'Roe' OR org_id = 3) AND email LIKE 'nobody'", False),
    ])
    def test_conditions(self, person, condition, expected):
        query = parse_query(f"SELECT Person WHERE {condition}")
        assert evaluate(query.condition, person.get) is expected

    def test_no_condition_matches_everything(self, person):
        assert evaluate(None, person.get)
