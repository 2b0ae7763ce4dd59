#  Copyright (c) 2024. The ldap-sync Authors. See the AUTHORS file.
#  This file is part of the ldap-sync project and licensed under the terms of
#  the Apache License, Version 2.0. See the LICENSE file for details
"""
ldap_sync.passwords
~~~~~~~~~~~~~~~~~~~
Hashing of one-way password attributes.
"""
from passlib.apps import ldap_context

crypt_context = ldap_context.copy(
    default="ldap_sha512_crypt",
    deprecated=["ldap_plaintext", "ldap_md5", "ldap_sha1", "ldap_salted_md5",
                "ldap_des_crypt", "ldap_bsdi_crypt", "ldap_md5_crypt"])


def hash_password(plaintext_passwd: str) -> str:
    """Generate a RFC 2307 compliant hash from given plaintext."""
    return crypt_context.hash(plaintext_passwd)


def verify_password(plaintext_password: str, hash: str | None) -> bool:
    """Verifies a plain password string against a given password hash."""
    try:
        return crypt_context.verify(plaintext_password, hash)
    # TypeError is required for objects not having a hash yet
    except (ValueError, TypeError):
        return False
