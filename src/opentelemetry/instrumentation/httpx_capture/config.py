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
"""Capture settings from instrument() arguments and the environment."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass

from opentelemetry.instrumentation.httpx_capture.environment_variables import (
    OTEL_PYTHON_HTTPX_CAPTURE_HEADERS,
    OTEL_PYTHON_HTTPX_CAPTURE_MAX_BODY_SIZE,
    OTEL_PYTHON_HTTPX_CAPTURE_REQUEST_BODY,
    OTEL_PYTHON_HTTPX_CAPTURE_RESPONSE_BODY,
)

_logger = logging.getLogger(__name__)

DEFAULT_MAX_BODY_SIZE = 10000

_TRUE_VALUES = {"true", "1", "yes"}
_FALSE_VALUES = {"false", "0", "no"}


@dataclass(frozen=True)
class CaptureConfig:
    """What an installed instrumentor records on each span."""

    capture_request_body: bool = True
    capture_response_body: bool = True
    capture_headers: bool = True
    max_body_size: int = DEFAULT_MAX_BODY_SIZE

    def __post_init__(self):
        # bool is an int subclass, reject it explicitly
        if isinstance(self.max_body_size, bool) or not isinstance(
            self.max_body_size, int
        ):
            raise ValueError(
                f"max_body_size must be an integer, got {self.max_body_size!r}"
            )
        if self.max_body_size < 0:
            raise ValueError(
                f"max_body_size must not be negative, got {self.max_body_size}"
            )


def _bool_from_env(name: str, default: bool) -> bool:
    raw = os.environ.get(name, "").strip().lower()
    if not raw:
        return default
    if raw in _TRUE_VALUES:
        return True
    if raw in _FALSE_VALUES:
        return False
    _logger.warning(
        "Invalid value %r for %s, using default %s", raw, name, default
    )
    return default


def _int_from_env(name: str, default: int) -> int:
    raw = os.environ.get(name, "").strip()
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError:
        value = -1
    if value < 0:
        _logger.warning(
            "Invalid value %r for %s, using default %s", raw, name, default
        )
        return default
    return value


def resolve_config(
    capture_request_body: bool | None = None,
    capture_response_body: bool | None = None,
    capture_headers: bool | None = None,
    max_body_size: int | None = None,
) -> CaptureConfig:
    """Build a `CaptureConfig`, falling back to environment variables.

    Explicit arguments win over the environment, which wins over the
    defaults.
    """
    if capture_request_body is None:
        capture_request_body = _bool_from_env(
            OTEL_PYTHON_HTTPX_CAPTURE_REQUEST_BODY, True
        )
    if capture_response_body is None:
        capture_response_body = _bool_from_env(
            OTEL_PYTHON_HTTPX_CAPTURE_RESPONSE_BODY, True
        )
    if capture_headers is None:
        capture_headers = _bool_from_env(
            OTEL_PYTHON_HTTPX_CAPTURE_HEADERS, True
        )
    if max_body_size is None:
        max_body_size = _int_from_env(
            OTEL_PYTHON_HTTPX_CAPTURE_MAX_BODY_SIZE, DEFAULT_MAX_BODY_SIZE
        )

    return CaptureConfig(
        capture_request_body=bool(capture_request_body),
        capture_response_body=bool(capture_response_body),
        capture_headers=bool(capture_headers),
        max_body_size=max_body_size,
    )
