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
"""
Body capture for request and response payloads.

Bodies are reduced to a `CaptureOutcome`: either the decoded payload, or a
marker record explaining why the payload was not recorded (binary, too large,
multipart form data, a stream that must not be consumed, or an error). None of
the functions in this module raise; failures become error markers.
"""

from __future__ import annotations

import copy
import enum
import json
import logging
import typing
from collections.abc import AsyncIterable, Iterable, Mapping
from urllib.parse import parse_qsl

import httpx

_logger = logging.getLogger(__name__)

PREVIEW_LENGTH = 100

BINARY_THRESHOLD = 0.3

# tab, line feed and carriage return are common in text bodies
_TEXT_CONTROL_BYTES = frozenset((9, 10, 13))

BINARY_CONTENT_TYPES = (
    "image/",
    "video/",
    "audio/",
    "application/octet-stream",
    "application/pdf",
    "application/zip",
    "multipart/form-data",
)


class BodyShape(enum.Enum):
    FORM_DATA = "form_data"
    URL_ENCODED = "url_encoded"
    STREAM = "stream"
    BUFFER = "buffer"
    TEXT = "text"
    OTHER = "other"


class OutcomeKind(enum.Enum):
    DATA = "data"
    TEXT = "text"
    BINARY = "binary"
    TRUNCATED = "truncated"
    FORM_DATA = "form_data"
    STREAM = "stream"
    ERROR = "error"


class RequestBody(typing.NamedTuple):
    shape: BodyShape
    value: typing.Any


class CaptureOutcome(typing.NamedTuple):
    kind: OutcomeKind
    value: typing.Any

    def to_attribute(self) -> str:
        """Render the outcome as a single span attribute value."""
        if isinstance(self.value, str):
            return self.value
        return to_json(self.value)


def to_json(value: typing.Any) -> str:
    return json.dumps(
        value, separators=(",", ":"), ensure_ascii=False, default=str
    )


def form_data_marker() -> CaptureOutcome:
    return CaptureOutcome(
        OutcomeKind.FORM_DATA,
        {
            "_type": "FormData",
            "_note": "FormData not captured (likely contains files)",
        },
    )


def stream_marker() -> CaptureOutcome:
    return CaptureOutcome(
        OutcomeKind.STREAM,
        {"_type": "Stream", "_note": "Stream not captured"},
    )


def binary_marker(
    size: int, content_type: str | None = None
) -> CaptureOutcome:
    if content_type is None:
        return CaptureOutcome(
            OutcomeKind.BINARY,
            {
                "_type": "Binary",
                "_size": size,
                "_note": "Binary data not captured",
            },
        )
    return CaptureOutcome(
        OutcomeKind.BINARY,
        {
            "_type": "Binary",
            "_contentType": content_type,
            "_size": size,
            "_note": "Binary content not captured",
        },
    )


def truncated_marker(
    size: int, preview: str | None = None, note: str | None = None
) -> CaptureOutcome:
    marker = {"_truncated": True, "_size": size}
    if preview is not None:
        marker["_preview"] = preview
    if note is not None:
        marker["_note"] = note
    return CaptureOutcome(OutcomeKind.TRUNCATED, marker)


def error_marker(subject: str, exc: BaseException) -> CaptureOutcome:
    return CaptureOutcome(
        OutcomeKind.ERROR,
        {
            "_error": f"Failed to capture {subject}",
            "_message": str(exc) or type(exc).__name__,
        },
    )


def _parsed(value: typing.Any) -> CaptureOutcome:
    if isinstance(value, str):
        return CaptureOutcome(OutcomeKind.TEXT, value)
    return CaptureOutcome(OutcomeKind.DATA, value)


def is_binary(data: bytes) -> bool:
    """Guess whether ``data`` is binary from its share of control bytes."""
    if not data:
        return False
    control_bytes = sum(
        1 for byte in data if byte < 32 and byte not in _TEXT_CONTROL_BYTES
    )
    return control_bytes / len(data) > BINARY_THRESHOLD


def is_binary_content_type(content_type: str) -> bool:
    content_type = content_type.lower()
    return any(
        binary_type in content_type for binary_type in BINARY_CONTENT_TYPES
    )


def _json_or_text(text: str) -> typing.Any:
    try:
        return json.loads(text)
    except ValueError:
        return text


def _form_value(value: typing.Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if value is None:
        return ""
    return str(value)


def form_fields(data: Mapping) -> dict[str, str]:
    """Flatten url-encoded form fields; the last of repeated values wins."""
    fields = {}
    for key, value in data.items():
        if isinstance(value, (list, tuple)):
            if not value:
                continue
            value = value[-1]
        fields[str(key)] = _form_value(value)
    return fields


def parse_body_text(text: str, content_type: str | None = None) -> typing.Any:
    """Parse ``text`` according to its declared content type.

    A body declared as ``application/json`` must be valid JSON and a
    ``ValueError`` is raised otherwise. Undeclared and unknown content types
    are parsed as JSON when possible and returned as text when not.
    """
    if not content_type:
        return _json_or_text(text)

    content_type = content_type.lower()
    if "application/json" in content_type:
        return json.loads(text)
    if "application/x-www-form-urlencoded" in content_type:
        return dict(parse_qsl(text, keep_blank_values=True))
    if "text/" in content_type:
        return text
    return _json_or_text(text)


def shape_of_content(content: typing.Any) -> BodyShape:
    if isinstance(content, str):
        return BodyShape.TEXT
    if isinstance(content, (bytes, bytearray, memoryview)):
        return BodyShape.BUFFER
    if hasattr(content, "read") or isinstance(
        content, (Iterable, AsyncIterable)
    ):
        return BodyShape.STREAM
    return BodyShape.OTHER


def request_body_from_arguments(
    arguments: Mapping[str, typing.Any],
) -> RequestBody | None:
    """Classify the body passed to ``Client.request`` as keyword arguments."""
    files = arguments.get("files")
    data = arguments.get("data")
    content = arguments.get("content")

    if files:
        return RequestBody(BodyShape.FORM_DATA, files)
    # httpx still accepts raw content through ``data``
    if content is None and data is not None and not isinstance(data, Mapping):
        content = data
    elif isinstance(data, Mapping) and data:
        return RequestBody(BodyShape.URL_ENCODED, data)

    if content is not None:
        shape = shape_of_content(content)
        if shape in (BodyShape.TEXT, BodyShape.BUFFER) and not len(content):
            return None
        return RequestBody(shape, content)

    json_payload = arguments.get("json")
    if json_payload is not None:
        return RequestBody(BodyShape.OTHER, json_payload)
    return None


def request_body_from_request(request: httpx.Request) -> RequestBody | None:
    """Classify the body of an already built ``httpx.Request``."""
    content_type = request.headers.get("content-type", "")
    if "multipart/form-data" in content_type.lower():
        return RequestBody(BodyShape.FORM_DATA, request.stream)
    try:
        content = request.content
    except httpx.RequestNotRead:
        return RequestBody(BodyShape.STREAM, request.stream)
    if not content:
        return None
    return RequestBody(BodyShape.BUFFER, content)


# Handlers share one signature: (value, content_type, max_body_size).
# pylint: disable=unused-argument


def _capture_form_data(value, content_type, max_body_size):
    return form_data_marker()


def _capture_url_encoded(value, content_type, max_body_size):
    return CaptureOutcome(OutcomeKind.DATA, form_fields(value))


def _capture_stream(value, content_type, max_body_size):
    return stream_marker()


def _capture_text(text, content_type, max_body_size):
    if len(text) > max_body_size:
        return truncated_marker(len(text), preview=text[:PREVIEW_LENGTH])
    return _parsed(parse_body_text(text, content_type))


def _capture_buffer(value, content_type, max_body_size):
    data = bytes(value)
    if is_binary(data):
        return binary_marker(len(data))
    return _capture_text(
        data.decode("utf-8", errors="replace"), content_type, max_body_size
    )


def _capture_other(value, content_type, max_body_size):
    return _parsed(value)


_REQUEST_BODY_HANDLERS = {
    BodyShape.FORM_DATA: _capture_form_data,
    BodyShape.URL_ENCODED: _capture_url_encoded,
    BodyShape.STREAM: _capture_stream,
    BodyShape.BUFFER: _capture_buffer,
    BodyShape.TEXT: _capture_text,
    BodyShape.OTHER: _capture_other,
}

# pylint: enable=unused-argument


def _declared_content_type(headers: typing.Any) -> str | None:
    if not headers:
        return None
    return httpx.Headers(headers).get("content-type")


def capture_request_body(
    body: RequestBody,
    headers: typing.Any = None,
    max_body_size: int = 10000,
) -> CaptureOutcome:
    """Turn a classified request body into a `CaptureOutcome`.

    Streams are never read so the request can still be sent.
    """
    try:
        content_type = _declared_content_type(headers)
        handler = _REQUEST_BODY_HANDLERS[body.shape]
        return handler(body.value, content_type, max_body_size)
    except Exception as exc:  # pylint: disable=broad-exception-caught
        _logger.debug("Failed to capture request body", exc_info=True)
        return error_marker("request body", exc)


def _content_length(headers: httpx.Headers) -> int:
    try:
        return int(headers.get("content-length", "0"))
    except ValueError:
        return 0


def duplicate_response(response: httpx.Response) -> httpx.Response | None:
    """Copy a response whose body is already buffered.

    Reading the copy does not touch the caller's response. Streaming
    responses that have not been read yet cannot be copied without consuming
    them, so ``None`` is returned.
    """
    try:
        response.content  # pylint: disable=pointless-statement
    except httpx.ResponseNotRead:
        return None
    return copy.copy(response)


def capture_response_body(
    response: httpx.Response, max_body_size: int = 10000
) -> CaptureOutcome:
    """Turn a response body into a `CaptureOutcome`.

    Declared sizes and binary content types are checked before the body is
    looked at.
    """
    try:
        content_type = response.headers.get("content-type", "")
        content_length = _content_length(response.headers)

        if content_length > max_body_size:
            return truncated_marker(
                content_length,
                note=f"Response too large ({content_length} bytes)",
            )

        if is_binary_content_type(content_type):
            return binary_marker(content_length, content_type=content_type)

        duplicate = duplicate_response(response)
        if duplicate is None:
            return stream_marker()

        text = duplicate.text
        if len(text) > max_body_size:
            return truncated_marker(len(text), preview=text[:PREVIEW_LENGTH])
        return _parsed(parse_body_text(text, content_type))
    except Exception as exc:  # pylint: disable=broad-exception-caught
        _logger.debug("Failed to capture response body", exc_info=True)
        return error_marker("response body", exc)


def to_span_attribute(outcome: CaptureOutcome, max_body_size: int) -> str:
    """Render ``outcome`` for a span, truncating oversized payloads."""
    value = outcome.to_attribute()
    if len(value) > max_body_size and outcome.kind in (
        OutcomeKind.DATA,
        OutcomeKind.TEXT,
    ):
        value = truncated_marker(
            len(value), preview=value[:PREVIEW_LENGTH]
        ).to_attribute()
    return value
