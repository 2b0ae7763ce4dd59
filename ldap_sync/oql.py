#  Copyright (c) 2024. The ldap-sync Authors. See the AUTHORS file.
#  This file is part of the ldap-sync project and licensed under the terms of
#  the Apache License, Version 2.0. See the LICENSE file for details
"""
ldap_sync.oql
~~~~~~~~~~~~~

The object query language of reconcile queries, e.g.::

    SELECT Person WHERE email LIKE "jdoe@example.org" AND org_id = 1

Grammar::

    query      := SELECT <class> [AS <alias>] [WHERE <expr>]
    expr       := conjunction (OR conjunction)*
    conjunction:= term (AND term)*
    term       := NOT term | "(" expr ")" | <attribute> <operator> <literal>
    operator   := = | != | <> | < | <= | > | >= | LIKE | NOT LIKE

Placeholders are substituted before a query is parsed; the template itself
is never parsed, apart from :func:`reconcile_class`.
"""
from __future__ import annotations

import dataclasses
import decimal
import operator
import re
import typing

from .exc import QueryError

_TOKEN = re.compile(r"""
    \s*(?:
        (?P<string>"(?:[^"\\]|\\.)*"|'(?:[^'\\]|\\.)*')
      | (?P<number>-?\d+(?:\.\d+)?)
      | (?P<op><=|>=|!=|<>|=|<|>)
      | (?P<paren>[()])
      | (?P<name>[A-Za-z_][A-Za-z0-9_]*(?:\.[A-Za-z_][A-Za-z0-9_]*)?)
    )""", re.VERBOSE)

_RECONCILE_CLASS = re.compile(r"SELECT\s+([A-Za-z0-9_]+)")

KEYWORDS = frozenset({'SELECT', 'AS', 'WHERE', 'AND', 'OR', 'NOT', 'LIKE'})

Literal = str | int | decimal.Decimal


@dataclasses.dataclass(frozen=True)
class Comparison:
    attribute: str
    operator: str
    value: Literal


@dataclasses.dataclass(frozen=True)
class Not:
    operand: Expression


@dataclasses.dataclass(frozen=True)
class BooleanOperation:
    operator: typing.Literal['AND', 'OR']
    operands: tuple[Expression, ...]


Expression = Comparison | Not | BooleanOperation


@dataclasses.dataclass(frozen=True)
class Query:
    class_name: str
    condition: Expression | None = None


def reconcile_class(template: str) -> str | None:
    """Extract the class name of a (not yet substituted) reconcile query."""
    if match := _RECONCILE_CLASS.search(template):
        return match.group(1)
    return None


def _tokenize(text: str) -> list[tuple[str, str]]:
    tokens = []
    position = 0
    text = text.rstrip()
    while position < len(text):
        match = _TOKEN.match(text, position)
        if match is None or match.end() == position:
            raise QueryError(f"Unexpected input at position {position}: {text[position:]!r}")
        kind = typing.cast(str, match.lastgroup)
        value = match.group(kind)
        if kind == 'name' and value.upper() in KEYWORDS:
            kind, value = 'keyword', value.upper()
        tokens.append((kind, value))
        position = match.end()
    return tokens


def _unquote(literal: str) -> str:
    return re.sub(r"\\(.)", r"\1", literal[1:-1])


class _Parser:
    def __init__(self, text: str) -> None:
        self.text = text
        self.tokens = _tokenize(text)
        self.position = 0
        self.qualifiers: set[str] = set()

    def peek(self) -> tuple[str, str] | None:
        if self.position < len(self.tokens):
            return self.tokens[self.position]
        return None

    def take(self, kind: str, value: str | None = None) -> str:
        token = self.peek()
        if token is None or token[0] != kind or (value is not None and token[1] != value):
            expected = value or kind
            raise QueryError(f"Expected {expected} in query {self.text!r}, got {token and token[1]!r}")
        self.position += 1
        return token[1]

    def accept(self, kind: str, value: str | None = None) -> bool:
        token = self.peek()
        if token is not None and token[0] == kind and (value is None or token[1] == value):
            self.position += 1
            return True
        return False

    def parse(self) -> Query:
        self.take('keyword', 'SELECT')
        class_name = self.take('name')
        self.qualifiers = {class_name}
        if self.accept('keyword', 'AS'):
            self.qualifiers.add(self.take('name'))
        condition = None
        if self.accept('keyword', 'WHERE'):
            condition = self.expression()
        if self.peek() is not None:
            raise QueryError(f"Unexpected {self.peek()[1]!r} in query {self.text!r}")  # type: ignore[index]
        return Query(class_name=class_name, condition=condition)

    def expression(self) -> Expression:
        operands = [self.conjunction()]
        while self.accept('keyword', 'OR'):
            operands.append(self.conjunction())
        return operands[0] if len(operands) == 1 else BooleanOperation('OR', tuple(operands))

    def conjunction(self) -> Expression:
        operands = [self.term()]
        while self.accept('keyword', 'AND'):
            operands.append(self.term())
        return operands[0] if len(operands) == 1 else BooleanOperation('AND', tuple(operands))

    def term(self) -> Expression:
        if self.accept('keyword', 'NOT'):
            return Not(self.term())
        if self.accept('paren', '('):
            expression = self.expression()
            self.take('paren', ')')
            return expression
        attribute = self.attribute()
        if self.accept('keyword', 'NOT'):
            self.take('keyword', 'LIKE')
            op = 'NOT LIKE'
        elif self.accept('keyword', 'LIKE'):
            op = 'LIKE'
        else:
            op = self.take('op')
        return Comparison(attribute, '!=' if op == '<>' else op, self.literal())

    def attribute(self) -> str:
        name = self.take('name')
        qualifier, _, attribute = name.rpartition('.')
        if qualifier and qualifier not in self.qualifiers:
            raise QueryError(f"Unknown class or alias {qualifier!r} in query {self.text!r}")
        return attribute

    def literal(self) -> Literal:
        token = self.peek()
        if token is not None and token[0] == 'string':
            self.position += 1
            return _unquote(token[1])
        number = self.take('number')
        return decimal.Decimal(number) if '.' in number else int(number)


def parse_query(text: str) -> Query:
    """Parse a reconcile query.

    :raises QueryError: if the query is malformed
    """
    return _Parser(text).parse()


def referenced_attributes(condition: Expression | None) -> typing.Iterator[str]:
    match condition:
        case Comparison(attribute=attribute):
            yield attribute
        case Not(operand=operand):
            yield from referenced_attributes(operand)
        case BooleanOperation(operands=operands):
            for operand in operands:
                yield from referenced_attributes(operand)


def like_to_regex(pattern: str) -> re.Pattern[str]:
    """Translate a ``LIKE`` pattern (``%`` and ``_`` wildcards) to a regular expression."""
    translated = ''.join(
        '.*' if char == '%' else '.' if char == '_' else re.escape(char)
        for char in pattern
    )
    return re.compile(translated, re.IGNORECASE | re.DOTALL)


_ORDERING = {
    '<': operator.lt,
    '<=': operator.le,
    '>': operator.gt,
    '>=': operator.ge,
}


def _compare(op: str, current: typing.Any, literal: Literal) -> bool:
    if current is None:
        # NULL never compares
        return False
    if op in ('LIKE', 'NOT LIKE'):
        matches = like_to_regex(str(literal)).fullmatch(str(current)) is not None
        return matches if op == 'LIKE' else not matches
    if isinstance(literal, (int, decimal.Decimal)) and not isinstance(current, str):
        left, right = decimal.Decimal(str(current)), decimal.Decimal(literal)
    else:
        left, right = str(current), str(literal)
    match op:
        case '=':
            return left == right
        case '!=':
            return left != right
        case _:
            return _ORDERING[op](left, right)


def evaluate(condition: Expression | None, get: typing.Callable[[str], typing.Any]) -> bool:
    """Evaluate :paramref:`condition` for an object whose attributes are
    accessible via :paramref:`get`."""
    match condition:
        case None:
            return True
        case Comparison(attribute=attribute, operator=op, value=value):
            return _compare(op, get(attribute), value)
        case Not(operand=operand):
            return not evaluate(operand, get)
        case BooleanOperation(operator='AND', operands=operands):
            return all(evaluate(o, get) for o in operands)
        case BooleanOperation(operator='OR', operands=operands):
            return any(evaluate(o, get) for o in operands)
    raise TypeError(f"Cannot evaluate {condition!r}")
