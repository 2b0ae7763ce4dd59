#  Copyright (c) 2024. The ldap-sync Authors. See the AUTHORS file.
#  This file is part of the ldap-sync project and licensed under the terms of
#  the Apache License, Version 2.0. See the LICENSE file for details
import os
import typing as t

from ldap_sync.exc import DirectoryError


class FakeDirectoryClient:
    """A directory client recording its calls.

    :param entries: host → raw entries returned by any search on that host
    """

    def __init__(
        self,
        entries: dict[str, list[dict[str, t.Any]]] | None = None,
        rejected_options: t.Collection[int] = (),
        unreachable_hosts: t.Collection[str] = (),
        fail_start_tls: bool = False,
        fail_bind: bool = False,
    ) -> None:
        self.entries = entries or {}
        self.rejected_options = rejected_options
        self.unreachable_hosts = unreachable_hosts
        self.fail_start_tls = fail_start_tls
        self.fail_bind = fail_bind
        self.calls: list[tuple[t.Any, ...]] = []
        #: the value of $TLS_REQCERT on every connect
        self.reqcert_on_connect: list[str | None] = []

    def connect(self, host, port):
        self.calls.append(('connect', host, port))
        self.reqcert_on_connect.append(os.environ.get('TLS_REQCERT'))
        if host in self.unreachable_hosts:
            raise DirectoryError(f"cannot connect to {host}")
        return {'host': host}

    def set_option(self, handle, key, value):
        self.calls.append(('set_option', key, value))
        return key not in self.rejected_options

    def start_tls(self, handle):
        self.calls.append(('start_tls',))
        return not self.fail_start_tls

    def bind(self, handle, dn, password):
        self.calls.append(('bind', dn))
        return not self.fail_bind

    def search(self, handle, base_dn, search_filter, attributes):
        self.calls.append(('search', base_dn, search_filter, tuple(attributes)))
        return self.entries.get(handle['host'], [])

    def get_entries(self, handle, result):
        return result

    def close(self, handle):
        self.calls.append(('close',))

    @property
    def call_names(self) -> list[str]:
        return [call[0] for call in self.calls]


def raw_entry(dn: str, **attributes: str | list[str]) -> dict[str, t.Any]:
    """An entry in the shape of `ldap_get_entries`."""
    entry: dict[str, t.Any] = {'dn': dn}
    for name, value in attributes.items():
        entry[name.lower()] = value if isinstance(value, list) else [value]
    entry['count'] = len(attributes)
    return entry
