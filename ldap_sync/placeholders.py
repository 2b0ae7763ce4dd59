#  Copyright (c) 2024. The ldap-sync Authors. See the AUTHORS file.
#  This file is part of the ldap-sync project and licensed under the terms of
#  the Apache License, Version 2.0. See the LICENSE file for details
"""
ldap_sync.placeholders
~~~~~~~~~~~~~~~~~~~~~~

Placeholders are ``$namespace->key$`` tokens in rule templates which are
replaced by values of the entry currently being processed, e.g.
``$ldap_object->mail$`` or ``$first_object->id$``.
"""
from __future__ import annotations

import collections
import re
import typing
from datetime import datetime

from .concepts.types import DirectoryEntry

#: Value of ``first_object->id`` / ``previous_object->id`` if there is no usable object
NO_OBJECT = -1

FIRST_OBJECT_ID = "first_object->id"
PREVIOUS_OBJECT_ID = "previous_object->id"
CURRENT_DATETIME = "current_datetime"
LDAP_OBJECT_PREFIX = "ldap_object->"
SERVER_PLACEHOLDER_PREFIX = "ldap_specific_placeholder->"

DATETIME_FORMAT = "%Y-%m-%d %H:%M:%S"

def _token_pattern(keys: typing.Iterable[str]) -> re.Pattern[str] | None:
    # longest first, so a key is never cut short by one of its prefixes
    alternatives = sorted((key for key in keys if key), key=len, reverse=True)
    if not alternatives:
        return None
    return re.compile(r"\$(" + "|".join(map(re.escape, alternatives)) + r")\$")


def substitute(template: str, context: typing.Mapping[str, typing.Any]) -> str:
    """Replace every ``$key$`` for which ``key`` is in :paramref:`context`.

    Only the keys of the context are recognized as tokens, so unknown tokens
    are left verbatim and never swallow a ``$`` of a neighbouring one.
    Substitution happens in a single pass, so a substituted value is never
    scanned for tokens again.

    >>> substitute("$ldap_object->mail$", {"ldap_object->mail": "a@b.com"})
    'a@b.com'
    >>> substitute("$unknown->x$", {})
    '$unknown->x$'
    """
    pattern = _token_pattern(context)
    if pattern is None:
        return template
    return pattern.sub(lambda match: str(context[match.group(1)]), template)


class PlaceholderContext(collections.UserDict[str, str]):
    """The placeholder values available while processing one directory entry.

    Values are stored as strings; the object id placeholders have integer
    accessors.
    """

    @classmethod
    def for_entry(
        cls,
        entry: DirectoryEntry,
        attributes: typing.Iterable[str],
        server_placeholders: typing.Mapping[str, typing.Any] | None = None,
        now: datetime | None = None,
    ) -> PlaceholderContext:
        """Build the initial context for an entry.

        :param entry: the normalized directory entry
        :param attributes: the requested attributes.  Every one of them is
            available as ``ldap_object-><attr>``, empty if the directory omitted it.
        :param server_placeholders: placeholders configured for the server the
            entry has been fetched from
        :param now: the sync time used for ``current_datetime``
        """
        context = cls()
        context[CURRENT_DATETIME] = (now or datetime.now()).strftime(DATETIME_FORMAT)
        context.first_object_id = NO_OBJECT
        for name, value in (server_placeholders or {}).items():
            context[SERVER_PLACEHOLDER_PREFIX + name] = value
        for attribute in attributes:
            context[LDAP_OBJECT_PREFIX + attribute] = entry.get(attribute, "")
        return context

    def __setitem__(self, key: str, value: typing.Any) -> None:
        super().__setitem__(key, str(value))

    def _get_id(self, key: str) -> int:
        try:
            return int(self.data[key])
        except (KeyError, ValueError):
            return NO_OBJECT

    @property
    def first_object_id(self) -> int:
        return self._get_id(FIRST_OBJECT_ID)

    @first_object_id.setter
    def first_object_id(self, value: int) -> None:
        self[FIRST_OBJECT_ID] = value

    @property
    def previous_object_id(self) -> int:
        return self._get_id(PREVIOUS_OBJECT_ID)

    @previous_object_id.setter
    def previous_object_id(self, value: int) -> None:
        self[PREVIOUS_OBJECT_ID] = value

    def substitute(self, template: typing.Any) -> str:
        return substitute(str(template), self)
