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

import base64
import json
import unittest

from opentelemetry.instrumentation.httpx_capture.redaction import (
    REDACTED,
    is_sensitive_header,
    parse_token_claims,
    redact_headers,
    token_claim_attributes,
)


def _segment(payload) -> str:
    raw = json.dumps(payload).encode("utf-8")
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")


TOKEN = ".".join(
    (
        _segment({"alg": "HS256", "typ": "JWT"}),
        _segment(
            {
                "sub": "u1",
                "admin": True,
                "iat": 1700000000,
                "roles": ["reader"],
                "org": {"id": 7},
                "nickname": None,
            }
        ),
        "c2lnbmF0dXJl",
    )
)


class TestParseTokenClaims(unittest.TestCase):
    def test_bearer_token(self):
        claims = parse_token_claims(f"Bearer {TOKEN}")
        self.assertEqual(claims["sub"], "u1")
        self.assertIs(claims["admin"], True)

    def test_prefix_is_case_insensitive_and_optional(self):
        self.assertEqual(parse_token_claims(f"bearer   {TOKEN}")["sub"], "u1")
        self.assertEqual(parse_token_claims(TOKEN)["sub"], "u1")

    def test_payload_with_url_safe_characters(self):
        # "???" and ">>>" encode to "_" and "-" in the url-safe alphabet
        payload = _segment({"q": "???>>>"})
        self.assertTrue("_" in payload or "-" in payload)
        claims = parse_token_claims(f"head.{payload}.sig")
        self.assertEqual(claims, {"q": "???>>>"})

    def test_wrong_number_of_segments(self):
        header, payload, _ = TOKEN.split(".")
        self.assertIsNone(parse_token_claims(f"Bearer {header}.{payload}"))
        self.assertIsNone(parse_token_claims(f"{TOKEN}.extra"))
        self.assertIsNone(parse_token_claims("opaque-api-key"))

    def test_not_base64(self):
        self.assertIsNone(parse_token_claims("Bearer head.%%%%.sig"))
        self.assertIsNone(parse_token_claims("Bearer head.b.sig"))

    def test_not_json(self):
        payload = base64.urlsafe_b64encode(b"not json").decode("ascii")
        self.assertIsNone(parse_token_claims(f"head.{payload}.sig"))

    def test_not_utf8(self):
        payload = base64.urlsafe_b64encode(b"\xff\xfe\xfd").decode("ascii")
        self.assertIsNone(parse_token_claims(f"head.{payload}.sig"))

    def test_payload_not_an_object(self):
        self.assertIsNone(parse_token_claims(f"head.{_segment([1, 2])}.sig"))


class TestTokenClaimAttributes(unittest.TestCase):
    def test_scalars_are_stringified(self):
        self.assertEqual(
            token_claim_attributes(
                {
                    "sub": "u1",
                    "admin": True,
                    "verified": False,
                    "iat": 1700000000,
                    "score": 1.5,
                    "exp": 1700000000.0,
                }
            ),
            {
                "token.sub": "u1",
                "token.admin": "true",
                "token.verified": "false",
                "token.iat": "1700000000",
                "token.score": "1.5",
                "token.exp": "1700000000",
            },
        )

    def test_non_scalars_are_dropped(self):
        self.assertEqual(
            token_claim_attributes(
                {"roles": ["a"], "org": {"id": 1}, "nickname": None}
            ),
            {},
        )


class TestRedactHeaders(unittest.TestCase):
    def test_sensitive_headers_are_redacted(self):
        headers = {
            "Authorization": "Basic dXNlcjpwYXNz",
            "Cookie": "session=abc",
            "X-Api-Key": "key",
            "X-Kubiks-Key": "key",
            "Proxy-Authenticate": "Basic",
            "Content-Type": "application/json",
            "Accept": "*/*",
        }
        redacted, claims = redact_headers(headers)

        self.assertEqual(
            redacted,
            {
                "Authorization": REDACTED,
                "Cookie": REDACTED,
                "X-Api-Key": REDACTED,
                "X-Kubiks-Key": REDACTED,
                "Proxy-Authenticate": REDACTED,
                "Content-Type": "application/json",
                "Accept": "*/*",
            },
        )
        self.assertEqual(claims, {})

    def test_names_match_by_substring(self):
        self.assertTrue(is_sensitive_header("X-Upstream-Authorization"))
        self.assertTrue(is_sensitive_header("my-cookie-jar"))
        self.assertTrue(is_sensitive_header("X-Bearer-Hint"))
        self.assertTrue(is_sensitive_header("x-access-token-v2"))
        self.assertFalse(is_sensitive_header("X-Request-Id"))
        self.assertFalse(is_sensitive_header("Author"))

    def test_input_is_not_modified(self):
        headers = {"authorization": f"Bearer {TOKEN}"}
        redact_headers(headers)
        self.assertEqual(headers, {"authorization": f"Bearer {TOKEN}"})

    def test_claims_from_authorization_header(self):
        redacted, claims = redact_headers({"Authorization": f"Bearer {TOKEN}"})

        self.assertEqual(redacted, {"Authorization": REDACTED})
        self.assertEqual(
            claims,
            {
                "token.sub": "u1",
                "token.admin": "true",
                "token.iat": "1700000000",
            },
        )

    def test_claims_from_proxy_authorization_header(self):
        _, claims = redact_headers({"proxy-authorization": TOKEN})
        self.assertEqual(claims["token.sub"], "u1")

    def test_no_claims_from_other_sensitive_headers(self):
        redacted, claims = redact_headers({"x-auth-token": f"Bearer {TOKEN}"})
        self.assertEqual(redacted, {"x-auth-token": REDACTED})
        self.assertEqual(claims, {})

    def test_invalid_token_is_still_redacted(self):
        redacted, claims = redact_headers({"authorization": "Bearer a.b"})
        self.assertEqual(redacted, {"authorization": REDACTED})
        self.assertEqual(claims, {})

    def test_empty_authorization_value(self):
        redacted, claims = redact_headers({"authorization": ""})
        self.assertEqual(redacted, {"authorization": REDACTED})
        self.assertEqual(claims, {})
