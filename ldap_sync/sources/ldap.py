#  Copyright (c) 2024. The ldap-sync Authors. See the AUTHORS file.
#  This file is part of the ldap-sync project and licensed under the terms of
#  the Apache License, Version 2.0. See the LICENSE file for details
"""
ldap_sync.sources.ldap
~~~~~~~~~~~~~~~~~~~~~~

This module is responsible for fetching the entries of a sync rule from
the directory.  Most prominently:

* :func:`query_directory`
* :func:`normalize_entry`
"""
import typing

from .. import logger
from ..concepts.rules import ServerConfig
from ..concepts.types import DirectoryEntry, RawEntry
from ..exc import DirectoryError
from ..ldap import DirectoryClient


def query_directory(
    client: DirectoryClient,
    config: ServerConfig,
    search_filter: str,
    attributes: typing.Sequence[str],
) -> list[DirectoryEntry]:
    """Connect to the server described by :paramref:`config` and fetch all
    entries matching :paramref:`search_filter`.

    The steps are strictly sequential, without retries: connect, apply the
    options, STARTTLS (if requested), bind, search.  The connection is
    released before returning.

    :param client: the directory client to use
    :param config: a resolved server configuration
    :param search_filter: the LDAP filter
    :param attributes: the attributes to fetch

    :raises DirectoryError: if any of the steps fails
    """
    address = f"{config.host}:{config.port}"
    handle = client.connect(config.host, config.port)
    try:
        for key, value in config.options.items():
            if not client.set_option(handle, key, value):
                raise DirectoryError(f"invalid LDAP option or value: {key}")

        if config.start_tls and not client.start_tls(handle):
            raise DirectoryError(f"start TLS failed for {address}")

        if not client.bind(handle, config.bind_dn, config.bind_password):
            raise DirectoryError(
                f"unable to bind to server {address} with user {config.bind_dn}"
            )

        logger.info("LDAP filter: %s", search_filter)
        result = client.search(handle, config.base_dn, search_filter, attributes)
        raw_entries = client.get_entries(handle, result)
    finally:
        client.close(handle)

    return [normalize_entry(raw, attributes) for raw in raw_entries]


def normalize_entry(raw: RawEntry, attributes: typing.Sequence[str]) -> DirectoryEntry:
    """Flatten a raw entry to a mapping of requested attribute → first value.

    The ``count`` pseudo-key and every attribute which has not been requested
    are dropped.  Only the first value of a multi-valued attribute is kept.
    Every requested attribute is present, empty if the directory omitted it.
    Attribute names are compared case-insensitively, the result uses the
    spelling of :paramref:`attributes`.
    """
    requested = {attribute.lower(): attribute for attribute in attributes}
    entry: DirectoryEntry = dict.fromkeys(attributes, "")
    for key, values in raw.items():
        if key.lower() == 'count' or (name := requested.get(key.lower())) is None:
            continue
        if isinstance(values, (list, tuple)):
            entry[name] = str(values[0]) if values else ""
        else:
            entry[name] = str(values)
    return entry
