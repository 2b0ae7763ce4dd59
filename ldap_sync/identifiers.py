#  Copyright (c) 2024. The ldap-sync Authors. See the AUTHORS file.
#  This file is part of the ldap-sync project and licensed under the terms of
#  the Apache License, Version 2.0. See the LICENSE file for details
"""
ldap_sync.identifiers
~~~~~~~~~~~~~~~~~~~~~
Textual forms of the binary ``objectSid`` and ``objectGUID`` attributes
of Active Directory.
"""
import struct
import uuid


def sid_to_string(sid: bytes) -> str:
    """Convert a binary security identifier to the ``S-R-A-S1-S2-…`` form.

    Layout: revision (1 byte), number of sub authorities (1 byte),
    identifier authority (48 bit, big endian), then the sub authorities
    (32 bit each, little endian).

    >>> sid_to_string(bytes.fromhex("010200000000000520000000" "20020000"))
    'S-1-5-32-544'
    """
    if len(sid) < 8:
        raise ValueError(f"A SID has at least 8 bytes, got {len(sid)}")
    revision, count = sid[0], sid[1]
    if len(sid) != 8 + 4 * count:
        raise ValueError(f"SID announces {count} sub authorities but has {len(sid)} bytes")
    authority = int.from_bytes(sid[2:8], 'big')
    sub_authorities = struct.unpack(f'<{count}I', sid[8:])
    return "-".join(["S", str(revision), str(authority), *map(str, sub_authorities)])


def guid_to_string(guid: bytes) -> str:
    """Convert a binary GUID to its canonical textual form.

    The first three groups are stored little endian, the last two as is.

    >>> guid_to_string(bytes.fromhex("3322110055447766" "8899aabbccddeeff"))
    '00112233-4455-6677-8899-aabbccddeeff'
    """
    return str(uuid.UUID(bytes_le=guid))
