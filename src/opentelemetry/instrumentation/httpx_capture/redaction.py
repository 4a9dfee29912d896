# Copyright The OpenTelemetry Authors
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
"""Header redaction and bearer token claim extraction."""

from __future__ import annotations

import base64
import json
import logging
import re
import typing

_logger = logging.getLogger(__name__)

REDACTED = "[REDACTED]"

SENSITIVE_HEADERS = (
    "authorization",
    "cookie",
    "set-cookie",
    "x-api-key",
    "x-auth-token",
    "x-access-token",
    "x-kubiks-key",
    "bearer",
    "proxy-authorization",
    "www-authenticate",
    "proxy-authenticate",
)

TOKEN_CLAIM_PREFIX = "token."

_BEARER_PREFIX = re.compile(r"^Bearer\s+", re.IGNORECASE)


class RedactionResult(typing.NamedTuple):
    headers: dict[str, str]
    claims: dict[str, str]


def is_sensitive_header(name: str) -> bool:
    lower_name = name.lower()
    return any(sensitive in lower_name for sensitive in SENSITIVE_HEADERS)


def parse_token_claims(token: str) -> dict[str, typing.Any] | None:
    """Decode the payload segment of a ``header.payload.signature`` token.

    Only the structure is checked: the signature and any expiry claims are
    ignored. Returns ``None`` if the token is malformed or the payload is not
    a JSON object.
    """
    parts = _BEARER_PREFIX.sub("", token, count=1).split(".")
    if len(parts) != 3:
        return None

    payload = parts[1].replace("-", "+").replace("_", "/")
    payload += "=" * ((4 - len(payload) % 4) % 4)
    try:
        # binascii.Error, UnicodeDecodeError and JSONDecodeError are all
        # ValueError subclasses
        claims = json.loads(
            base64.b64decode(payload, validate=True).decode("utf-8")
        )
    except ValueError:
        return None

    if not isinstance(claims, dict):
        return None
    return claims


def _stringify_claim(value: typing.Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def token_claim_attributes(
    claims: typing.Mapping[str, typing.Any],
) -> dict[str, str]:
    """Keep scalar claims only, as ``token.<name>`` string attributes."""
    return {
        f"{TOKEN_CLAIM_PREFIX}{name}": _stringify_claim(value)
        for name, value in claims.items()
        if isinstance(value, (str, int, float, bool))
    }


def redact_headers(headers: typing.Mapping[str, str]) -> RedactionResult:
    """Replace sensitive header values with `REDACTED`.

    Claims of bearer tokens found in ``authorization``-like headers are
    returned alongside the redacted headers. Keys keep their original casing.
    """
    redacted = dict(headers)
    claims: dict[str, str] = {}

    for name, value in headers.items():
        if not is_sensitive_header(name):
            continue
        if "authorization" in name.lower() and value:
            token_claims = parse_token_claims(value)
            if token_claims:
                claims.update(token_claim_attributes(token_claims))
            else:
                _logger.debug("No token claims found in %s header", name)
        redacted[name] = REDACTED

    return RedactionResult(redacted, claims)
