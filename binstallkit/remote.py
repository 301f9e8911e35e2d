"""HTTP client with retries, client-side throttling and server rate-limit back-off."""

from __future__ import annotations

import json
import logging
import ssl
import time
from collections.abc import Callable, Iterable, Iterator, Mapping
from dataclasses import dataclass, field, replace
from email.utils import parsedate_to_datetime
from typing import Any
from urllib.parse import urlsplit

import requests
from requests.adapters import HTTPAdapter

from .ratelimit import DelayRequest
from .tls import Certificate, TLSVersion

log = logging.getLogger(__name__)

MAX_RETRY_DURATION = 120.0
MAX_RETRY_COUNT = 3
DEFAULT_RETRY_DURATION_FOR_RATE_LIMIT = 0.2
RETRY_DURATION_FOR_TIMEOUT = 0.2
DEFAULT_MIN_TLS = TLSVersion.TLS_1_2

_STREAM_CHUNK_SIZE = 64 * 1024

# Statuses for which a failed HEAD is retried with GET.
_HEAD_RETRYABLE = frozenset({400, 401, 403, 404, 405, 410})


class RemoteError(Exception):
    """A request could not be built or its response could not be read."""


class HttpError(RemoteError):
    """A request failed: transport error or, when requested, an error status."""

    def __init__(self, method: str, url: str, err: BaseException) -> None:
        self.method = method
        self.url = url
        self.err = err
        super().__init__(f"could not {method} {url}: {err}")

    def is_status(self) -> bool:
        """True if the error comes from an unsuccessful status code."""
        return isinstance(self.err, requests.HTTPError) and self.err.response is not None

    @property
    def status(self) -> int | None:
        if self.is_status():
            return self.err.response.status_code
        return None


def _parse_u64(value: str | None) -> int | None:
    if value is None:
        return None
    text = value[1:] if value.startswith("+") else value
    if not text or not text.isascii() or not text.isdigit():
        return None
    return int(text)


def parse_header_retry_after(headers: Mapping[str, Any], now: float | None = None) -> float | None:
    """Seconds to wait according to the last `Retry-After` header, if any.

    The value may be a number of seconds or an HTTP date; a date in the
    past gives 0.
    """
    value = headers.get("Retry-After")
    if isinstance(value, (list, tuple)):
        if not value:
            return None
        value = value[-1]
    if value is None:
        return None
    if isinstance(value, bytes):
        try:
            value = value.decode("ascii")
        except UnicodeDecodeError:
            return None
    value = str(value).strip()

    seconds = _parse_u64(value)
    if seconds is not None:
        return float(seconds)

    try:
        when = parsedate_to_datetime(value)
    except (TypeError, ValueError, IndexError):
        return None
    if when is None or when.tzinfo is None:
        return None
    retry_at = when.timestamp()
    if retry_at < 0:
        return None
    current = time.time() if now is None else now
    return max(0.0, retry_at - current)


class _TLSAdapter(HTTPAdapter):
    def __init__(self, ssl_context: ssl.SSLContext, **kwargs: Any) -> None:
        self._ssl_context = ssl_context
        super().__init__(**kwargs)

    def init_poolmanager(self, *args: Any, **kwargs: Any) -> None:
        kwargs["ssl_context"] = self._ssl_context
        super().init_poolmanager(*args, **kwargs)

    def proxy_manager_for(self, *args: Any, **kwargs: Any):
        kwargs["ssl_context"] = self._ssl_context
        return super().proxy_manager_for(*args, **kwargs)


def _build_ssl_context(min_tls: TLSVersion | None, certificates: Iterable[Certificate]) -> ssl.SSLContext:
    context = ssl.create_default_context()
    version = DEFAULT_MIN_TLS if min_tls is None else max(min_tls, DEFAULT_MIN_TLS)
    context.minimum_version = TLSVersion(version).to_ssl()
    for certificate in certificates:
        certificate.add_to(context)
    return context


@dataclass
class _Attempt:
    retry: bool
    response: requests.Response | None = None
    error: BaseException | None = None


class Client:
    """Download client; only https URLs are allowed.

    At most `num_request` requests are sent every `per_millis` milliseconds;
    increase `per_millis` if rate-limit errors happen.
    """

    def __init__(
        self,
        user_agent: str,
        min_tls: TLSVersion | None = None,
        per_millis: int = 10,
        num_request: int = 1,
        certificates: Iterable[Certificate] = (),
        *,
        timeout: float | None = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if not 1 <= per_millis <= 0xFFFF:
            raise ValueError("per_millis must be between 1 and 65535")
        if num_request < 1:
            raise ValueError("num_request must be at least 1")

        session = requests.Session()
        session.headers["User-Agent"] = user_agent
        session.mount("https://", _TLSAdapter(_build_ssl_context(min_tls, certificates)))

        self._session = session
        self._timeout = timeout
        self._service = DelayRequest(
            num_request, per_millis / 1000, self._transport, clock=clock, sleep=sleep
        )

    @property
    def session(self) -> requests.Session:
        return self._session

    @property
    def service(self) -> DelayRequest:
        return self._service

    def _transport(self, prepared: requests.PreparedRequest) -> requests.Response:
        if urlsplit(prepared.url).scheme != "https":
            raise requests.exceptions.InvalidSchema(f"URL scheme is not allowed: {prepared.url}")
        return self._session.send(prepared, stream=True, timeout=self._timeout)

    def _prepare(
        self,
        method: str,
        url: str,
        headers: Mapping[str, str] | None = None,
        data: Any = None,
    ) -> requests.PreparedRequest:
        try:
            request = requests.Request(method, str(url), headers=dict(headers or {}), data=data)
            return self._session.prepare_request(request)
        except (requests.RequestException, ValueError) as err:
            raise RemoteError(f"Reqwest error: {err}") from err

    def _do_send_request(self, prepared: requests.PreparedRequest) -> _Attempt:
        url = prepared.url
        try:
            response = self._service.call(prepared.copy())
        except (requests.Timeout, requests.ConnectionError) as err:
            duration = RETRY_DURATION_FOR_TIMEOUT
            log.info("Received timeout error. Delay future request by %ss", duration)
            self._service.add_urls_to_delay([url], duration)
            return _Attempt(retry=True, error=err)

        status = response.status_code
        headers = response.headers

        # Some servers report a rate limit even on success or other statuses.
        duration = parse_header_retry_after(headers)
        if duration is not None:
            duration = min(duration, MAX_RETRY_DURATION)
        elif headers.get("x-ratelimit-remaining") == "0":
            reset = _parse_u64(headers.get("x-ratelimit-reset"))
            duration = min(
                DEFAULT_RETRY_DURATION_FOR_RATE_LIMIT if reset is None else float(reset),
                MAX_RETRY_DURATION,
            )
        elif status in (503, 429):
            duration = DEFAULT_RETRY_DURATION_FOR_RATE_LIMIT
        elif status in (408, 504):
            duration = RETRY_DURATION_FOR_TIMEOUT
        else:
            return _Attempt(retry=False, response=response)

        log.info("Received status code %s, will wait for %ss and retry", status, duration)
        self._service.add_urls_to_delay([url, response.url], duration)
        return _Attempt(retry=True, response=response)

    def _send_request_inner(self, prepared: requests.PreparedRequest) -> requests.Response:
        for count in range(1, MAX_RETRY_COUNT + 1):
            attempt = self._do_send_request(prepared)
            if not attempt.retry:
                return attempt.response
            if count >= MAX_RETRY_COUNT:
                if attempt.error is not None:
                    raise attempt.error
                return attempt.response
            if attempt.response is not None:
                attempt.response.close()
        raise AssertionError("unreachable")

    def _send_request(
        self, prepared: requests.PreparedRequest, error_for_status: bool
    ) -> requests.Response:
        log.debug("Downloading from: '%s'", prepared.url)
        try:
            response = self._send_request_inner(prepared)
            if error_for_status:
                response.raise_for_status()
        except requests.RequestException as err:
            raise HttpError(prepared.method, prepared.url, err) from err
        return response

    def _head_or_fallback_to_get(self, url: str, error_for_status: bool) -> requests.Response:
        def retry_with_get() -> requests.Response:
            log.info("HEAD on %s is not allowed, fallback to GET", url)
            return self._send_request(self._prepare("GET", url), error_for_status)

        try:
            response = self._send_request(self._prepare("HEAD", url), error_for_status)
        except HttpError as err:
            if err.status in _HEAD_RETRYABLE:
                return retry_with_get()
            raise
        if response.status_code in _HEAD_RETRYABLE:
            response.close()
            return retry_with_get()
        return response

    def remote_gettable(self, url: str) -> bool:
        """Check with GET whether `url` answers with a success status."""
        response = self.get(url).send(False)
        try:
            return 200 <= response.status < 300
        finally:
            response.close()

    def get_redirected_final_url(self, url: str) -> str:
        """Follow redirects with HEAD (or GET as fallback) and return the final URL."""
        response = self._head_or_fallback_to_get(str(url), True)
        try:
            return response.url
        finally:
            response.close()

    def get_stream(self, url: str) -> Iterator[bytes]:
        """GET `url` and return its body as chunks; error statuses raise."""
        return self.get(url).send(True).bytes_stream()

    def request(self, method: str, url: str) -> RequestBuilder:
        return RequestBuilder(client=self, method=method.upper(), url=str(url))

    def get(self, url: str) -> RequestBuilder:
        return self.request("GET", url)

    def post(self, url: str, body: Any) -> RequestBuilder:
        return self.request("POST", url).body(body)


@dataclass(frozen=True)
class RequestBuilder:
    """A request being put together; each method returns a new builder."""

    client: Client
    method: str
    url: str
    headers: dict[str, str] = field(default_factory=dict)
    data: Any = None

    def bearer_auth(self, token: object) -> RequestBuilder:
        return self.header("Authorization", f"Bearer {token}")

    def header(self, key: str, value: str) -> RequestBuilder:
        return replace(self, headers={**self.headers, key: value})

    def body(self, body: Any) -> RequestBuilder:
        return replace(self, data=body)

    def send(self, error_for_status: bool) -> Response:
        prepared = self.client._prepare(self.method, self.url, self.headers, self.data)
        return Response(self.client._send_request(prepared, error_for_status), self.method)


class Response:
    """A received response together with the method that produced it."""

    def __init__(self, inner: requests.Response, method: str) -> None:
        self._inner = inner
        self._method = method

    @property
    def raw(self) -> requests.Response:
        return self._inner

    @property
    def status(self) -> int:
        return self._inner.status_code

    @property
    def url(self) -> str:
        return self._inner.url

    @property
    def method(self) -> str:
        return self._method

    @property
    def headers(self) -> Mapping[str, str]:
        return self._inner.headers

    def close(self) -> None:
        self._inner.close()

    def bytes(self) -> bytes:
        try:
            return self._inner.content
        except requests.RequestException as err:
            raise RemoteError(f"Reqwest error: {err}") from err

    def bytes_stream(self) -> Iterator[bytes]:
        method, url = self._method, self._inner.url
        try:
            for chunk in self._inner.iter_content(chunk_size=_STREAM_CHUNK_SIZE):
                if chunk:
                    yield chunk
        except requests.RequestException as err:
            raise HttpError(method, url, err) from err
        finally:
            self._inner.close()

    def error_for_status(self) -> Response:
        """Return self, or raise HttpError for a 4xx/5xx status."""
        try:
            self._inner.raise_for_status()
        except requests.HTTPError as err:
            raise HttpError(self._method, self._inner.url, err) from err
        return self

    def json(self) -> Any:
        data = self.error_for_status().bytes()
        try:
            return json.loads(data)
        except (ValueError, UnicodeDecodeError) as err:
            raise RemoteError(f"Failed to parse http response body as Json: {err}") from err