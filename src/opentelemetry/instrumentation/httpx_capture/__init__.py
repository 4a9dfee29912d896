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
Records the payloads of outgoing httpx requests on OpenTelemetry spans.

Every call made through ``httpx.Client`` or ``httpx.AsyncClient`` gets a client
span carrying the request and response headers and bodies. Sensitive headers
are redacted, and claims of bearer tokens found in ``Authorization`` headers
are recorded as ``token.*`` attributes instead. Bodies that are binary, too
large, multipart or streamed are replaced by a small marker record.

Usage
-----

.. code-block:: python

    import httpx
    from opentelemetry.instrumentation.httpx_capture import (
        HTTPXCaptureInstrumentor,
    )

    HTTPXCaptureInstrumentor().instrument(max_body_size=4096)

    with httpx.Client() as client:
        response = client.post("https://example.com", json={"query": 1})

    HTTPXCaptureInstrumentor().uninstrument()

``enable_body_capture`` replaces an active installation with a new
configuration, and ``disable_body_capture`` removes it:

.. code-block:: python

    from opentelemetry.instrumentation.httpx_capture import (
        disable_body_capture,
        enable_body_capture,
    )

    enable_body_capture(capture_response_body=False)
    enable_body_capture(capture_headers=False)  # replaces the first one
    disable_body_capture()

Configuration
-------------

Options passed to ``instrument`` take precedence over the environment.

* ``capture_request_body`` / ``OTEL_PYTHON_HTTPX_CAPTURE_REQUEST_BODY``
* ``capture_response_body`` / ``OTEL_PYTHON_HTTPX_CAPTURE_RESPONSE_BODY``
* ``capture_headers`` / ``OTEL_PYTHON_HTTPX_CAPTURE_HEADERS``
* ``max_body_size`` / ``OTEL_PYTHON_HTTPX_CAPTURE_MAX_BODY_SIZE``

To exclude URLs, set ``OTEL_PYTHON_HTTPX_CAPTURE_EXCLUDED_URLS`` (or
``OTEL_PYTHON_EXCLUDED_URLS``) to a comma delimited list of regexes.

API
---
"""

from __future__ import annotations

import logging
import typing
from contextlib import contextmanager
from functools import partial

import httpx
from wrapt import wrap_function_wrapper

from opentelemetry import context
from opentelemetry.instrumentation.httpx_capture.body import (
    CaptureOutcome,
    RequestBody,
    capture_request_body,
    capture_response_body,
    error_marker,
    request_body_from_arguments,
    request_body_from_request,
    to_span_attribute,
)
from opentelemetry.instrumentation.httpx_capture.config import (
    CaptureConfig,
    resolve_config,
)
from opentelemetry.instrumentation.httpx_capture.package import _instruments
from opentelemetry.instrumentation.httpx_capture.redaction import (
    redact_headers,
)
from opentelemetry.instrumentation.httpx_capture.version import __version__
from opentelemetry.instrumentation.instrumentor import BaseInstrumentor
from opentelemetry.instrumentation.utils import (
    is_http_instrumentation_enabled,
    unwrap,
)
from opentelemetry.semconv._incubating.attributes.http_attributes import (
    HTTP_HOST,
    HTTP_METHOD,
    HTTP_SCHEME,
    HTTP_STATUS_CODE,
    HTTP_URL,
)
from opentelemetry.trace import SpanKind, Tracer, get_tracer
from opentelemetry.trace.span import Span
from opentelemetry.trace.status import Status, StatusCode
from opentelemetry.util.http import ExcludeList, get_excluded_urls, redact_url

_logger = logging.getLogger(__name__)

HTTP_STATUS_TEXT = "http.status_text"
REQUEST_BODY = "request.body"
RESPONSE_BODY = "response.body"
REQUEST_HEADERS = "request.headers"
RESPONSE_HEADERS = "response.headers"

OTEL_SOURCE = "kubiks.otel.source"
OTEL_VERSION = "kubiks.otel.version"
OTEL_INSTRUMENTATION = "kubiks.otel.instrumentation"

_SOURCE_NAME = "otel-python"
_INSTRUMENTATION_NAME = "httpx-capture"

_CAPTURE_ACTIVE_KEY = context.create_key("httpx-capture-active")


class OutgoingCall(typing.NamedTuple):
    method: str
    url: httpx.URL
    headers: httpx.Headers | None
    body: RequestBody | None


def _resolve_url(target: typing.Any) -> httpx.URL:
    """Normalize the target of a call to an ``httpx.URL``.

    The target is a string, an ``httpx.URL`` or a request-like object
    exposing ``url``.
    """
    if isinstance(target, httpx.URL):
        return target
    if isinstance(target, str):
        return httpx.URL(target)
    if hasattr(target, "url"):
        return httpx.URL(str(target.url))
    raise TypeError(f"Cannot resolve a URL from {type(target).__name__}")


def _normalize_method(method: str | bytes | None) -> str:
    if isinstance(method, bytes):
        method = method.decode()
    return method.upper() if method else "GET"


def _call_from_arguments(
    client: httpx.Client | httpx.AsyncClient,
    args: tuple[typing.Any, ...],
    kwargs: dict[str, typing.Any],
) -> OutgoingCall:
    """Describe a ``Client.request(method, url, **kwargs)`` call."""
    method = kwargs.get("method", args[0] if args else None)
    target = kwargs.get("url", args[1] if len(args) > 1 else None)
    # pylint: disable=protected-access
    url = client._merge_url(_resolve_url(target))

    headers = httpx.Headers(client.headers)
    if kwargs.get("headers") is not None:
        headers.update(kwargs["headers"])

    return OutgoingCall(
        _normalize_method(method),
        url,
        headers,
        request_body_from_arguments(kwargs),
    )


def _call_from_request(
    client: httpx.Client | httpx.AsyncClient,
    args: tuple[typing.Any, ...],
    kwargs: dict[str, typing.Any],
) -> OutgoingCall:
    """Describe a ``Client.send(request, **kwargs)`` call."""
    request = kwargs.get("request", args[0] if args else None)
    return OutgoingCall(
        _normalize_method(getattr(request, "method", None)),
        _resolve_url(request),
        getattr(request, "headers", None),
        request_body_from_request(request),
    )


class _HTTPXCapture:
    """Records each intercepted call on its own span."""

    def __init__(
        self,
        tracer: Tracer,
        config: CaptureConfig,
        excluded_urls: ExcludeList | None = None,
    ):
        self._tracer = tracer
        self._config = config
        self._excluded_urls = excluded_urls

    def prepare(
        self,
        extract: typing.Callable[..., OutgoingCall],
        instance: typing.Any,
        args: tuple[typing.Any, ...],
        kwargs: dict[str, typing.Any],
    ) -> OutgoingCall | None:
        """Describe the call, or return ``None`` if it must not be traced."""
        # send() issued by an intercepted request() of the same client is
        # already covered
        if (
            extract is _call_from_request
            and context.get_value(_CAPTURE_ACTIVE_KEY) is instance
        ):
            return None
        if not is_http_instrumentation_enabled():
            return None

        try:
            call = extract(instance, args, kwargs)
        except Exception:  # pylint: disable=broad-exception-caught
            _logger.debug(
                "Not capturing unrecognized httpx call", exc_info=True
            )
            return None

        if self._excluded_urls and self._excluded_urls.url_disabled(
            str(call.url)
        ):
            return None
        return call

    @contextmanager
    def span(
        self, call: OutgoingCall, instance: typing.Any
    ) -> typing.Iterator[Span]:
        """Open the client span of ``call`` and record the request on it."""
        with self._tracer.start_as_current_span(
            f"fetch {call.method}",
            kind=SpanKind.CLIENT,
            attributes=self._request_attributes(call),
            set_status_on_exception=False,
        ) as span:
            if span.is_recording():
                self._record_request(span, call)

            token = context.attach(
                context.set_value(_CAPTURE_ACTIVE_KEY, instance)
            )
            try:
                yield span
            # cancellation is a failure of the call like any other
            except BaseException as exc:
                span.set_status(
                    Status(StatusCode.ERROR, str(exc) or type(exc).__name__)
                )
                raise
            finally:
                context.detach(token)

    @staticmethod
    def _request_attributes(call: OutgoingCall) -> dict[str, typing.Any]:
        url = call.url
        host = f"{url.host}:{url.port}" if url.port else url.host
        return {
            HTTP_METHOD: call.method,
            HTTP_URL: redact_url(str(url)),
            HTTP_SCHEME: url.scheme,
            HTTP_HOST: host,
            OTEL_SOURCE: _SOURCE_NAME,
            OTEL_VERSION: __version__,
            OTEL_INSTRUMENTATION: _INSTRUMENTATION_NAME,
        }

    def _record_request(self, span: Span, call: OutgoingCall) -> None:
        if self._config.capture_headers and call.headers:
            self._record_headers(span, REQUEST_HEADERS, call.headers)

        if self._config.capture_request_body and call.body is not None:
            outcome = capture_request_body(
                call.body, call.headers, self._config.max_body_size
            )
            self._record_body(span, REQUEST_BODY, outcome)

    def record_response(self, span: Span, response: httpx.Response) -> None:
        if span.is_recording():
            span.set_attribute(HTTP_STATUS_CODE, response.status_code)
            span.set_attribute(HTTP_STATUS_TEXT, response.reason_phrase)

            if self._config.capture_headers:
                self._record_headers(span, RESPONSE_HEADERS, response.headers)

            if self._config.capture_response_body:
                outcome = capture_response_body(
                    response, self._config.max_body_size
                )
                self._record_body(span, RESPONSE_BODY, outcome)

        span.set_status(Status(StatusCode.OK))

    @staticmethod
    def _record_headers(
        span: Span, prefix: str, headers: httpx.Headers
    ) -> None:
        try:
            redacted, claims = redact_headers(
                {name.lower(): value for name, value in headers.items()}
            )
            span.set_attributes(
                {f"{prefix}.{name}": value for name, value in redacted.items()}
            )
            if claims:
                span.set_attributes(claims)
        except Exception as exc:  # pylint: disable=broad-exception-caught
            _logger.debug("Failed to capture %s", prefix, exc_info=True)
            span.set_attribute(
                prefix,
                error_marker(prefix.replace(".", " "), exc).to_attribute(),
            )

    def _record_body(
        self, span: Span, key: str, outcome: CaptureOutcome
    ) -> None:
        try:
            value = to_span_attribute(outcome, self._config.max_body_size)
        except Exception as exc:  # pylint: disable=broad-exception-caught
            _logger.debug("Failed to serialize %s", key, exc_info=True)
            value = error_marker(key.replace(".", " "), exc).to_attribute()
        span.set_attribute(key, value)


def _traced_call(
    wrapped: typing.Callable[..., httpx.Response],
    instance: httpx.Client,
    args: tuple[typing.Any, ...],
    kwargs: dict[str, typing.Any],
    capture: _HTTPXCapture,
    extract: typing.Callable[..., OutgoingCall],
) -> httpx.Response:
    call = capture.prepare(extract, instance, args, kwargs)
    if call is None:
        return wrapped(*args, **kwargs)

    with capture.span(call, instance) as span:
        response = wrapped(*args, **kwargs)
        capture.record_response(span, response)
    return response


async def _traced_async_call(
    wrapped: typing.Callable[..., typing.Awaitable[httpx.Response]],
    instance: httpx.AsyncClient,
    args: tuple[typing.Any, ...],
    kwargs: dict[str, typing.Any],
    capture: _HTTPXCapture,
    extract: typing.Callable[..., OutgoingCall],
) -> httpx.Response:
    call = capture.prepare(extract, instance, args, kwargs)
    if call is None:
        return await wrapped(*args, **kwargs)

    with capture.span(call, instance) as span:
        response = await wrapped(*args, **kwargs)
        capture.record_response(span, response)
    return response


_WRAPPED_METHODS = (
    ("Client.request", _traced_call, _call_from_arguments),
    ("Client.send", _traced_call, _call_from_request),
    ("AsyncClient.request", _traced_async_call, _call_from_arguments),
    ("AsyncClient.send", _traced_async_call, _call_from_request),
)


class HTTPXCaptureInstrumentor(BaseInstrumentor):
    # pylint: disable=attribute-defined-outside-init
    """An instrumentor recording payloads of httpx Client and AsyncClient

    See `BaseInstrumentor`
    """

    _config: CaptureConfig | None = None

    def instrumentation_dependencies(self) -> typing.Collection[str]:
        return _instruments

    @property
    def config(self) -> CaptureConfig | None:
        """The configuration of the active installation, if any."""
        return self._config

    def _instrument(self, **kwargs: typing.Any):
        """Wraps the request and send methods of httpx clients

        Args:
            **kwargs: Optional arguments
                ``tracer_provider``: a TracerProvider, defaults to global
                ``capture_request_body``: record request bodies
                ``capture_response_body``: record response bodies
                ``capture_headers``: record redacted headers
                ``max_body_size``: largest body recorded, in bytes
        """
        config = resolve_config(
            capture_request_body=kwargs.get("capture_request_body"),
            capture_response_body=kwargs.get("capture_response_body"),
            capture_headers=kwargs.get("capture_headers"),
            max_body_size=kwargs.get("max_body_size"),
        )
        tracer = get_tracer(
            __name__,
            instrumenting_library_version=__version__,
            tracer_provider=kwargs.get("tracer_provider"),
        )
        capture = _HTTPXCapture(
            tracer, config, get_excluded_urls("HTTPX_CAPTURE")
        )

        for name, wrapper, extract in _WRAPPED_METHODS:
            wrap_function_wrapper(
                "httpx",
                name,
                partial(wrapper, capture=capture, extract=extract),
            )
        self._config = config

    def _uninstrument(self, **kwargs: typing.Any):
        unwrap(httpx.Client, "request")
        unwrap(httpx.Client, "send")
        unwrap(httpx.AsyncClient, "request")
        unwrap(httpx.AsyncClient, "send")
        self._config = None


def enable_body_capture(**kwargs: typing.Any) -> HTTPXCaptureInstrumentor:
    """Install body capture, replacing any active installation.

    Accepts the options of `HTTPXCaptureInstrumentor.instrument` and returns
    the instrumentor, whose ``uninstrument`` undoes the installation.
    """
    instrumentor = HTTPXCaptureInstrumentor()
    if instrumentor.is_instrumented_by_opentelemetry:
        instrumentor.uninstrument()
    instrumentor.instrument(**kwargs)
    return instrumentor


def disable_body_capture() -> None:
    """Restore the original httpx methods. Does nothing if not installed."""
    instrumentor = HTTPXCaptureInstrumentor()
    if instrumentor.is_instrumented_by_opentelemetry:
        instrumentor.uninstrument()
