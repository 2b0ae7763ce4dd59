#  Copyright (c) 2024. The ldap-sync Authors. See the AUTHORS file.
#  This file is part of the ldap-sync project and licensed under the terms of
#  the Apache License, Version 2.0. See the LICENSE file for details
import enum
import typing


#: A directory entry as consumed by the rule chain: requested attribute name → first value.
DirectoryEntry = dict[str, str]

# an entry in the shape `ldap_get_entries` of libldap bindings returns:
# lower-cased attribute names mapping to value lists, plus `dn` and the `count` pseudo-key.
RawEntry = dict[str, typing.Any]


class AttributeKind(enum.Enum):
    """The kinds of attributes the schema provider distinguishes."""

    DATETIME = "DateTime"
    DECIMAL = "Decimal"
    EXTERNAL_KEY = "ExternalKey"
    INTEGER = "Integer"
    ONE_WAY_PASSWORD = "OneWayPassword"
    STRING = "String"
    LINKED_SET = "LinkedSet"
    LINKED_SET_INDIRECT = "LinkedSetIndirect"
    OTHER = "Other"


LINKED_KINDS = frozenset({
    AttributeKind.LINKED_SET,
    AttributeKind.LINKED_SET_INDIRECT,
})
