#  Copyright (c) 2024. The ldap-sync Authors. See the AUTHORS file.
#  This file is part of the ldap-sync project and licensed under the terms of
#  the Apache License, Version 2.0. See the LICENSE file for details
"""
ldap_sync.conversion
~~~~~~~~~~~~~~~~~~~~
Converts substituted placeholder templates to attribute values.
"""
from __future__ import annotations

import decimal
import typing
from datetime import datetime

from .concepts.types import AttributeKind
from .exc import ConversionError
from .passwords import verify_password
from .placeholders import DATETIME_FORMAT


def coerce_value(kind: AttributeKind, value: str) -> typing.Any:
    """Convert :paramref:`value` to the python type of :paramref:`kind`.

    An empty string is ``None`` for every non-string kind, since directories
    omit empty attributes.  Passwords stay plain, hashing them is up to the store.

    :raises ConversionError: if the value cannot be converted
    """
    match kind:
        case AttributeKind.STRING | AttributeKind.ONE_WAY_PASSWORD:
            return value
        case _ if value == "":
            return None
        case AttributeKind.INTEGER | AttributeKind.EXTERNAL_KEY:
            try:
                return int(value)
            except ValueError:
                raise ConversionError(f"{value!r} is not an integer") from None
        case AttributeKind.DECIMAL:
            try:
                return decimal.Decimal(value)
            except decimal.InvalidOperation:
                raise ConversionError(f"{value!r} is not a decimal") from None
        case AttributeKind.DATETIME:
            return _parse_datetime(value)
        case _:
            raise ConversionError(f"values of kind {kind.value} cannot be converted")


def _parse_datetime(value: str) -> datetime:
    try:
        return datetime.strptime(value, DATETIME_FORMAT)
    except ValueError:
        pass
    try:
        return datetime.fromisoformat(value)
    except ValueError:
        raise ConversionError(f"{value!r} is not a date and time") from None


def is_current(kind: AttributeKind, current: typing.Any, desired: typing.Any) -> bool:
    """Whether a stored value already matches the desired one."""
    if kind is AttributeKind.ONE_WAY_PASSWORD:
        return desired is not None and verify_password(desired, current)
    if kind is AttributeKind.DECIMAL and current is not None and desired is not None:
        return decimal.Decimal(str(current)) == desired
    return current == desired
