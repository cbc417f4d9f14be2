"""HTTP transport implementations for infrastructure.

Usage example:
    import requests

    from kra_connect.infrastructure.http import RequestsTransport
    from kra_connect.protocols import TransportRequest

    transport = RequestsTransport(
        session=requests.Session(),
        base_url="https://api.kra.go.ke/gavaconnect/v1",
        headers={"Authorization": "Bearer <key>"},
    )
    payload = transport.send(TransportRequest("POST", "/checker/v1/pinbypin", {"KRAPIN": "..."}))
"""

from __future__ import annotations

from collections.abc import Mapping
from datetime import UTC, datetime
from email.utils import parsedate_to_datetime
from typing import override

import requests
from pydantic import TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from ..config import KraConfig
from ..exceptions import (
    ApiError,
    ApiTimeoutError,
    AuthenticationError,
    MalformedResponseError,
    NetworkError,
    RateLimitExceededError,
)
from ..observability import get_logger
from ..protocols import Transport, TransportRequest

logger = get_logger("kra_connect.infrastructure.http")

DEFAULT_RETRY_AFTER_SECONDS = 60

_JSON_OBJECT = TypeAdapter(dict[str, object])


def parse_retry_after(headers: Mapping[str, str] | None) -> int | None:
    """Parse Retry-After header into seconds, if available."""
    if not headers:
        return None
    value = headers.get("Retry-After")
    if not value:
        return None
    value = value.strip()
    if value.isdigit():
        return int(value)
    try:
        dt = parsedate_to_datetime(value)
        if dt.tzinfo is None:
            dt = dt.replace(tzinfo=UTC)
        delta = (dt - datetime.now(UTC)).total_seconds()
        return max(0, int(delta))
    except (AttributeError, OverflowError, TypeError, ValueError):
        return None


def _response_body(response: requests.Response) -> str:
    """Return a compact body summary for error reporting."""
    try:
        body = response.text
    except (UnicodeDecodeError, ValueError, requests.RequestException):
        body = "<unreadable>"
    body = " ".join(body.split())
    if len(body) > 300:
        body = body[:300] + "..."
    return body


class RequestsTransport(Transport):
    """`requests`-backed transport that turns every failure into a client error.

    - Timeouts (and HTTP 408) raise ApiTimeoutError
    - Connection failures raise NetworkError
    - 401/403 raise AuthenticationError
    - 429 raises RateLimitExceededError with the server's Retry-After
    - Other 4xx/5xx raise ClientError/ServerError
    - Bodies that are not a JSON object raise MalformedResponseError
    """

    def __init__(
        self,
        *,
        base_url: str,
        session: requests.Session | None = None,
        headers: Mapping[str, str] | None = None,
        timeout_seconds: float = 30.0,
        debug: bool = False,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.session = session or requests.Session()
        if headers:
            self.session.headers.update(headers)
        self.timeout_seconds = timeout_seconds
        self.debug = debug

    @classmethod
    def from_config(
        cls, config: KraConfig, session: requests.Session | None = None
    ) -> RequestsTransport:
        return cls(
            base_url=config.base_url,
            session=session,
            headers=config.headers(),
            timeout_seconds=config.timeout_seconds,
            debug=config.debug,
        )

    def url_for(self, endpoint: str) -> str:
        return f"{self.base_url}/{endpoint.lstrip('/')}"

    @override
    def send(self, request: TransportRequest) -> dict[str, object]:
        endpoint = request.endpoint
        log = logger.info if self.debug else logger.debug
        log("%s %s", request.method, endpoint)

        kwargs: dict[str, object] = {"timeout": self.timeout_seconds}
        if request.method == "GET":
            kwargs["params"] = dict(request.payload)
        elif request.payload:
            kwargs["json"] = dict(request.payload)

        try:
            response = self.session.request(request.method, self.url_for(endpoint), **kwargs)
        except requests.Timeout as exc:
            raise ApiTimeoutError(endpoint, self.timeout_seconds) from exc
        except requests.RequestException as exc:
            raise NetworkError(endpoint, str(exc)) from exc

        log("%s %s -> %d", request.method, endpoint, response.status_code)
        self._raise_for_status(response, endpoint)
        return self._decode(response, endpoint)

    def _raise_for_status(self, response: requests.Response, endpoint: str) -> None:
        status = response.status_code
        if status < 400:
            return
        if status == 401:
            raise AuthenticationError.invalid_api_key(endpoint)
        if status == 403:
            raise AuthenticationError.forbidden(endpoint)
        if status == 408:
            raise ApiTimeoutError(endpoint, self.timeout_seconds)
        if status == 429:
            retry_after = parse_retry_after(getattr(response, "headers", None))
            logger.warning("Rate limit response from %s: %s", endpoint, _response_body(response))
            raise RateLimitExceededError(
                DEFAULT_RETRY_AFTER_SECONDS if retry_after is None else retry_after,
                endpoint=endpoint,
            )
        raise ApiError.from_status(status, endpoint, _response_body(response))

    def _decode(self, response: requests.Response, endpoint: str) -> dict[str, object]:
        body = response.content
        if not body or not body.strip():
            return {}
        try:
            return _JSON_OBJECT.validate_json(body)
        except PydanticValidationError as exc:
            reason = exc.errors()[0].get("msg", "invalid JSON")
            raise MalformedResponseError(endpoint, f"expected a JSON object ({reason})") from exc
