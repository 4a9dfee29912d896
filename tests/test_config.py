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

import dataclasses
import os
import unittest
from unittest import mock

from opentelemetry.instrumentation.httpx_capture.config import (
    DEFAULT_MAX_BODY_SIZE,
    CaptureConfig,
    resolve_config,
)
from opentelemetry.instrumentation.httpx_capture.environment_variables import (
    OTEL_PYTHON_HTTPX_CAPTURE_HEADERS,
    OTEL_PYTHON_HTTPX_CAPTURE_MAX_BODY_SIZE,
    OTEL_PYTHON_HTTPX_CAPTURE_REQUEST_BODY,
    OTEL_PYTHON_HTTPX_CAPTURE_RESPONSE_BODY,
)


class TestCaptureConfig(unittest.TestCase):
    def test_defaults(self):
        self.assertEqual(
            CaptureConfig(),
            CaptureConfig(
                capture_request_body=True,
                capture_response_body=True,
                capture_headers=True,
                max_body_size=10000,
            ),
        )
        self.assertEqual(DEFAULT_MAX_BODY_SIZE, 10000)

    def test_invalid_max_body_size(self):
        for value in (-1, "100", 1.5, True, None):
            with self.subTest(value=value):
                with self.assertRaises(ValueError):
                    CaptureConfig(max_body_size=value)

    def test_zero_max_body_size(self):
        self.assertEqual(CaptureConfig(max_body_size=0).max_body_size, 0)

    def test_frozen(self):
        config = CaptureConfig()
        with self.assertRaises(dataclasses.FrozenInstanceError):
            config.max_body_size = 1


class TestResolveConfig(unittest.TestCase):
    @mock.patch.dict(os.environ, {}, clear=True)
    def test_defaults(self):
        self.assertEqual(resolve_config(), CaptureConfig())

    @mock.patch.dict(
        os.environ,
        {
            OTEL_PYTHON_HTTPX_CAPTURE_REQUEST_BODY: "false",
            OTEL_PYTHON_HTTPX_CAPTURE_RESPONSE_BODY: " No ",
            OTEL_PYTHON_HTTPX_CAPTURE_HEADERS: "0",
            OTEL_PYTHON_HTTPX_CAPTURE_MAX_BODY_SIZE: "512",
        },
        clear=True,
    )
    def test_environment(self):
        self.assertEqual(
            resolve_config(),
            CaptureConfig(
                capture_request_body=False,
                capture_response_body=False,
                capture_headers=False,
                max_body_size=512,
            ),
        )

    @mock.patch.dict(
        os.environ,
        {
            OTEL_PYTHON_HTTPX_CAPTURE_REQUEST_BODY: "false",
            OTEL_PYTHON_HTTPX_CAPTURE_MAX_BODY_SIZE: "512",
        },
        clear=True,
    )
    def test_arguments_win_over_environment(self):
        config = resolve_config(capture_request_body=True, max_body_size=64)
        self.assertTrue(config.capture_request_body)
        self.assertEqual(config.max_body_size, 64)

    @mock.patch.dict(
        os.environ,
        {
            OTEL_PYTHON_HTTPX_CAPTURE_HEADERS: "maybe",
            OTEL_PYTHON_HTTPX_CAPTURE_MAX_BODY_SIZE: "-5",
        },
        clear=True,
    )
    def test_invalid_environment_uses_defaults(self):
        with self.assertLogs(
            "opentelemetry.instrumentation.httpx_capture.config",
            level="WARNING",
        ) as logs:
            config = resolve_config()

        self.assertTrue(config.capture_headers)
        self.assertEqual(config.max_body_size, DEFAULT_MAX_BODY_SIZE)
        self.assertEqual(len(logs.records), 2)

    @mock.patch.dict(
        os.environ, {OTEL_PYTHON_HTTPX_CAPTURE_MAX_BODY_SIZE: "lots"}
    )
    def test_non_numeric_max_body_size(self):
        with self.assertLogs(level="WARNING"):
            config = resolve_config()
        self.assertEqual(config.max_body_size, DEFAULT_MAX_BODY_SIZE)

    def test_invalid_argument(self):
        with self.assertRaises(ValueError):
            resolve_config(max_body_size=-1)
