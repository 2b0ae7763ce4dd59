#  Copyright (c) 2024. The ldap-sync Authors. See the AUTHORS file.
#  This file is part of the ldap-sync project and licensed under the terms of
#  the Apache License, Version 2.0. See the LICENSE file for details
"""
ldap_sync.concepts.outcome
~~~~~~~~~~~~~~~~~~~~~~~~~~

The possible outcomes of reconciling one object rule against the store.
Each outcome knows which id the following rules of the chain may refer to.
"""
from __future__ import annotations

import dataclasses

from ..placeholders import NO_OBJECT


@dataclasses.dataclass(frozen=True)
class Created:
    object_id: int

    @property
    def reference_id(self) -> int:
        return self.object_id


@dataclasses.dataclass(frozen=True)
class Updated:
    """An existing object has been found.  ``changed`` is false if it was already in sync."""
    object_id: int
    changed: bool

    @property
    def reference_id(self) -> int:
        return self.object_id


@dataclasses.dataclass(frozen=True)
class Skipped:
    object_id: int | None
    reason: str

    @property
    def reference_id(self) -> int:
        # a found object can still be referred to, even if it has not been updated
        return self.object_id if self.object_id is not None else NO_OBJECT


@dataclasses.dataclass(frozen=True)
class Ambiguous:
    count: int

    @property
    def reference_id(self) -> int:
        return NO_OBJECT


Outcome = Created | Updated | Skipped | Ambiguous
