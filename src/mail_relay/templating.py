# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Subject templates and encoded sender names.

Supported subject placeholders:

- ``{email}``: recipient address
- ``{randomID:N}``: N alphanumeric characters
- ``{randomUppercase:N}``: N uppercase letters
- ``{randomLowercase:N}``: N lowercase letters
- ``{randomNumber:N}``: N digits

Every placeholder occurrence is filled with a fresh random value of the
requested length, at most ``MAX_RANDOM_LENGTH`` characters.
"""

from __future__ import annotations

import base64
import binascii
import re
import secrets
import string

DEFAULT_SUBJECT_TEMPLATE = "Hello {email} - ID: {randomID:7}"
# "Mailer <noreply@gmail.com>"
DEFAULT_FROM_NAME = "TWFpbGVyIDxub3JlcGx5QGdtYWlsLmNvbT4="

ALPHABETS = {
    "randomID": string.ascii_letters + string.digits,
    "randomUppercase": string.ascii_uppercase,
    "randomLowercase": string.ascii_lowercase,
    "randomNumber": string.digits,
}

MAX_RANDOM_LENGTH = 64

_PLACEHOLDER = re.compile(r"\{(?:(email)|(randomID|randomUppercase|randomLowercase|randomNumber):(\d+))\}")
_ENCODED_WORD = re.compile(r"^=\?us-ascii\?B\?(.*)\?=$", re.IGNORECASE)


def random_string(length: int, kind: str = "randomID") -> str:
    """Return ``length`` random characters from the alphabet named by ``kind``."""
    alphabet = ALPHABETS.get(kind, ALPHABETS["randomID"])
    return "".join(secrets.choice(alphabet) for _ in range(length))


def render_subject(template: str, email: str) -> str:
    """Fill ``template`` for the recipient ``email``.

    Placeholders are expanded in one pass over the template, so the address
    is inserted literally. Random lengths are capped at ``MAX_RANDOM_LENGTH``.
    """

    def fill(match: re.Match[str]) -> str:
        if match.group(1):
            return email
        return random_string(min(int(match.group(3)), MAX_RANDOM_LENGTH), match.group(2))

    return _PLACEHOLDER.sub(fill, template)


def decode_from_name(value: str) -> str:
    """Decode a base64 sender name, optionally wrapped as ``=?us-ascii?B?...?=``.

    Returns ``value`` unchanged when it is not valid base64 text.
    """
    match = _ENCODED_WORD.match(value)
    payload = match.group(1) if match else value
    try:
        return base64.b64decode(payload, validate=True).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError):
        return value
