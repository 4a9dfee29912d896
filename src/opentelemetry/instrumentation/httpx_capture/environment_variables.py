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

OTEL_PYTHON_HTTPX_CAPTURE_REQUEST_BODY = (
    "OTEL_PYTHON_HTTPX_CAPTURE_REQUEST_BODY"
)
"""
.. envvar:: OTEL_PYTHON_HTTPX_CAPTURE_REQUEST_BODY

true / false (default: true)
"""

OTEL_PYTHON_HTTPX_CAPTURE_RESPONSE_BODY = (
    "OTEL_PYTHON_HTTPX_CAPTURE_RESPONSE_BODY"
)
"""
.. envvar:: OTEL_PYTHON_HTTPX_CAPTURE_RESPONSE_BODY

true / false (default: true)
"""

OTEL_PYTHON_HTTPX_CAPTURE_HEADERS = "OTEL_PYTHON_HTTPX_CAPTURE_HEADERS"
"""
.. envvar:: OTEL_PYTHON_HTTPX_CAPTURE_HEADERS

true / false (default: true). Sensitive header values are always redacted.
"""

OTEL_PYTHON_HTTPX_CAPTURE_MAX_BODY_SIZE = (
    "OTEL_PYTHON_HTTPX_CAPTURE_MAX_BODY_SIZE"
)
"""
.. envvar:: OTEL_PYTHON_HTTPX_CAPTURE_MAX_BODY_SIZE

Largest body, in bytes (characters for decoded text), recorded on a span
(default: 10000). Larger bodies are replaced by a truncation marker.
"""
