#  Copyright (c) 2024. The ldap-sync Authors. See the AUTHORS file.
#  This file is part of the ldap-sync project and licensed under the terms of
#  the Apache License, Version 2.0. See the LICENSE file for details
"""
ldap_sync.exc
~~~~~~~~~~~~~
"""


class SyncError(Exception):
    pass


class ConfigError(SyncError):
    """Missing or mistyped settings, or a rule referring to unknown classes/attributes."""


class DirectoryError(SyncError):
    """A connect, option, STARTTLS, bind or search step failed."""


class PersistenceError(SyncError):
    """The object store rejected an insert or an update."""


class ConversionError(PersistenceError):
    """A value could not be converted to the kind of its target attribute."""


class QueryError(SyncError):
    """A reconcile query could not be parsed."""
