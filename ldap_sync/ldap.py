#  Copyright (c) 2024. The ldap-sync Authors. See the AUTHORS file.
#  This file is part of the ldap-sync project and licensed under the terms of
#  the Apache License, Version 2.0. See the LICENSE file for details
"""
ldap_sync.ldap
~~~~~~~~~~~~~~

The directory client: the handful of LDAP operations the syncer needs,
implemented on top of :mod:`ldap3`.

The interface follows the libldap call sequence (connect, set options,
optionally STARTTLS, bind, search, fetch entries).  Options are given as
libldap option codes, so configurations written for libldap based tools
keep working.
"""
from __future__ import annotations

import contextlib
import dataclasses
import enum
import os
import ssl
import typing

import ldap3
from ldap3.core.exceptions import LDAPException

from . import logger
from .concepts.types import RawEntry
from .exc import DirectoryError
from .identifiers import guid_to_string, sid_to_string


class LdapOption(enum.IntEnum):
    """The supported libldap option codes (`LDAP_OPT_*`)."""
    DEREF = 0x0002
    SIZELIMIT = 0x0003
    TIMELIMIT = 0x0004
    REFERRALS = 0x0008
    PROTOCOL_VERSION = 0x0011
    NETWORK_TIMEOUT = 0x5002
    TIMEOUT = 0x5005
    X_TLS_REQUIRE_CERT = 0x6006


_DEREF = {
    0: ldap3.DEREF_NEVER,
    1: ldap3.DEREF_SEARCH,
    2: ldap3.DEREF_BASE,
    3: ldap3.DEREF_ALWAYS,
}

# LDAP_OPT_X_TLS_{NEVER,HARD,DEMAND,ALLOW,TRY}
_REQUIRE_CERT = {
    0: ssl.CERT_NONE,
    1: ssl.CERT_REQUIRED,
    2: ssl.CERT_REQUIRED,
    3: ssl.CERT_OPTIONAL,
    4: ssl.CERT_OPTIONAL,
}

_REQCERT_ENVIRON = {
    'never': ssl.CERT_NONE,
    'allow': ssl.CERT_OPTIONAL,
    'try': ssl.CERT_OPTIONAL,
    'demand': ssl.CERT_REQUIRED,
    'hard': ssl.CERT_REQUIRED,
}

TLS_ENVIRON_KEYS = ('TLS_REQCERT', 'LDAPTLS_REQCERT')

#: attributes with binary values and how to represent them as text
BINARY_ATTRIBUTES: dict[str, typing.Callable[[bytes], str]] = {
    'objectsid': sid_to_string,
    'objectguid': guid_to_string,
}


class DirectoryClient(typing.Protocol):
    """The operations the query executor needs from a directory client."""

    def connect(self, host: str, port: int) -> typing.Any:
        """Return a connection handle.

        :raises DirectoryError: if the server parameters are unusable
        """

    def set_option(self, handle: typing.Any, key: int, value: int) -> bool: ...

    def start_tls(self, handle: typing.Any) -> bool: ...

    def bind(self, handle: typing.Any, dn: str, password: str) -> bool: ...

    def search(
        self,
        handle: typing.Any,
        base_dn: str,
        search_filter: str,
        attributes: typing.Sequence[str],
    ) -> typing.Any:
        """Execute a subtree search.

        :raises DirectoryError: if the search failed
        """

    def get_entries(self, handle: typing.Any, result: typing.Any) -> list[RawEntry]: ...

    def close(self, handle: typing.Any) -> None: ...


@dataclasses.dataclass
class Ldap3Handle:
    host: str
    port: int
    server_kwargs: dict[str, typing.Any] = dataclasses.field(default_factory=dict)
    connection_kwargs: dict[str, typing.Any] = dataclasses.field(default_factory=dict)
    search_kwargs: dict[str, typing.Any] = dataclasses.field(default_factory=dict)
    tls_validate: int | None = None
    connection: ldap3.Connection | None = None

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.host}:{self.port}>"


def _tls_validate_from_environ() -> int:
    for key in reversed(TLS_ENVIRON_KEYS):
        if (value := os.environ.get(key)) is not None:
            return _REQCERT_ENVIRON.get(value.lower(), ssl.CERT_REQUIRED)
    return ssl.CERT_REQUIRED


class Ldap3DirectoryClient:
    """A :class:`DirectoryClient` using :mod:`ldap3`.

    ldap3 expects most options on construction of the server and connection
    objects, which is why these are only built when the connection is
    actually needed (STARTTLS or bind).

    :param client_strategy: the ldap3 client strategy, e.g.
        :data:`ldap3.MOCK_SYNC` to use a mocked backend
    :param server_factory: builds the :class:`ldap3.Server`; receives the
        keyword arguments of its constructor
    """

    def __init__(
        self,
        client_strategy: str = ldap3.SYNC,
        server_factory: typing.Callable[..., ldap3.Server] = ldap3.Server,
    ) -> None:
        self.client_strategy = client_strategy
        self.server_factory = server_factory

    def connect(self, host: str, port: int) -> Ldap3Handle:
        if not host:
            raise DirectoryError("no host given")
        if not 0 < port < 65536:
            raise DirectoryError(f"invalid port {port}")
        return Ldap3Handle(host=host, port=port)

    def set_option(self, handle: Ldap3Handle, key: int, value: int) -> bool:
        if handle.connection is not None:
            logger.warning("Option %#x set after the connection has been opened", key)
            return False
        match key:
            case LdapOption.DEREF if value in _DEREF:
                handle.search_kwargs['dereference_aliases'] = _DEREF[value]
            case LdapOption.SIZELIMIT if value >= 0:
                handle.search_kwargs['size_limit'] = value
            case LdapOption.TIMELIMIT if value >= 0:
                handle.search_kwargs['time_limit'] = value
            case LdapOption.REFERRALS:
                handle.connection_kwargs['auto_referrals'] = bool(value)
            case LdapOption.PROTOCOL_VERSION if value in (2, 3):
                handle.connection_kwargs['version'] = value
            case LdapOption.NETWORK_TIMEOUT if value > 0:
                handle.server_kwargs['connect_timeout'] = value
            case LdapOption.TIMEOUT if value > 0:
                handle.connection_kwargs['receive_timeout'] = value
            case LdapOption.X_TLS_REQUIRE_CERT if value in _REQUIRE_CERT:
                handle.tls_validate = _REQUIRE_CERT[value]
            case _:
                return False
        return True

    def _ensure_connection(self, handle: Ldap3Handle, **kwargs: typing.Any) -> ldap3.Connection:
        if handle.connection is None:
            validate = (handle.tls_validate if handle.tls_validate is not None
                        else _tls_validate_from_environ())
            server = self.server_factory(
                host=handle.host,
                port=handle.port,
                tls=ldap3.Tls(validate=validate),
                get_info=ldap3.NONE,
                **handle.server_kwargs,
            )
            handle.connection = ldap3.Connection(
                server,
                client_strategy=self.client_strategy,
                **handle.connection_kwargs,
                **kwargs,
            )
        return handle.connection

    def start_tls(self, handle: Ldap3Handle) -> bool:
        connection = self._ensure_connection(handle)
        try:
            if connection.closed:
                connection.open()
            return bool(connection.start_tls())
        except LDAPException as e:
            logger.debug("STARTTLS failed: %s", e)
            return False

    def bind(self, handle: Ldap3Handle, dn: str, password: str) -> bool:
        try:
            if handle.connection is None:
                connection = self._ensure_connection(handle, user=dn, password=password)
                return bool(connection.bind())
            return bool(handle.connection.rebind(
                user=dn, password=password, authentication=ldap3.SIMPLE
            ))
        except LDAPException as e:
            # the exception message does not contain the credentials
            logger.debug("Bind failed: %s", e)
            return False

    def search(
        self,
        handle: Ldap3Handle,
        base_dn: str,
        search_filter: str,
        attributes: typing.Sequence[str],
    ) -> list[dict[str, typing.Any]]:
        if handle.connection is None or not handle.connection.bound:
            raise DirectoryError("search on an unbound connection")
        connection = handle.connection
        try:
            connection.search(
                search_base=base_dn,
                search_filter=search_filter,
                search_scope=ldap3.SUBTREE,
                attributes=list(attributes),
                **handle.search_kwargs,
            )
        except LDAPException as e:
            raise DirectoryError(f"search failed: {e}") from e

        match connection.result.get('result'):
            case 0:
                pass
            case 4:
                logger.warning("Size limit exceeded, results are incomplete")
            case _:
                raise DirectoryError(f"search failed: {connection.result.get('description')}")
        return [
            response for response in connection.response or []
            if response.get('type', 'searchResEntry') == 'searchResEntry'
        ]

    def get_entries(
        self, handle: Ldap3Handle, result: list[dict[str, typing.Any]]
    ) -> list[RawEntry]:
        return [_to_raw_entry(response) for response in result]

    def close(self, handle: Ldap3Handle) -> None:
        if handle.connection is None:
            return
        try:
            handle.connection.unbind()
        except LDAPException as e:
            logger.debug("Unbind failed: %s", e)
        handle.connection = None


def _to_raw_entry(response: typing.Mapping[str, typing.Any]) -> RawEntry:
    attributes = response.get('raw_attributes') or response.get('attributes') or {}
    entry: RawEntry = {'dn': response['dn']}
    for name, values in attributes.items():
        key = name.lower()
        if not isinstance(values, list):
            values = [values]
        entry[key] = [value_to_text(key, value) for value in values]
    entry['count'] = len(attributes)
    return entry


def value_to_text(attribute: str, value: typing.Any) -> str:
    """Represent an attribute value as a string.

    Binary attributes like ``objectsid`` are decoded into their textual form,
    other undecodable values are hex encoded.
    """
    if not isinstance(value, bytes):
        return str(value)
    if decode := BINARY_ATTRIBUTES.get(attribute):
        try:
            return decode(value)
        except ValueError:
            pass
    try:
        return value.decode('utf-8')
    except UnicodeDecodeError:
        return value.hex()


@contextlib.contextmanager
def ignore_tls_certificates() -> typing.Iterator[None]:
    """Disable TLS certificate validation via the environment for the duration
    of the context.  The previous values are restored on every exit path.
    """
    previous = {key: os.environ.get(key) for key in TLS_ENVIRON_KEYS}
    try:
        for key in TLS_ENVIRON_KEYS:
            os.environ[key] = 'never'
        yield
    finally:
        for key, value in previous.items():
            if value is None:
                os.environ.pop(key, None)
            else:
                os.environ[key] = value
