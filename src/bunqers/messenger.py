"""Signed request/response exchange with the bank's API."""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Awaitable, Callable, Mapping, Optional, Union

import httpx

from bunqers.config import ClientConfig
from bunqers.envelope import Envelope, EnvelopeCodec
from bunqers.errors import MessengerStateError, RateLimited, SignatureInvalid, TransportError
from bunqers.keys import KeyPair, ServerPublicKey
from bunqers.retry import RetriesExhausted, retry_while_rate_limited, should_retry_http_status

LOGGER = logging.getLogger(__name__)

Body = Union[Mapping[str, Any], bytes, str, None]

SUPPORTED_METHODS = ("GET", "POST", "PUT")


def _normalize_body(body: Body) -> bytes | None:
    if body is None:
        return None
    if isinstance(body, bytes):
        return body
    if isinstance(body, str):
        return body.encode("utf-8")
    if isinstance(body, Mapping):
        return json.dumps(body).encode("utf-8")
    raise ValueError("Unsupported body type. Use a mapping, bytes, str, or None.")


class SignedMessenger:
    """Sends requests signed with the device key and checks the server's signatures.

    The server key is absent until installation completes; only
    :meth:`send_unverified` works without it.
    """

    def __init__(
        self,
        key_pair: KeyPair,
        *,
        config: ClientConfig | None = None,
        server_public_key: ServerPublicKey | None = None,
        authentication_token: str | None = None,
        http_client: httpx.AsyncClient | None = None,
        codec: EnvelopeCodec | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.config = config or ClientConfig()
        self.key_pair = key_pair
        self.server_public_key = server_public_key
        self.authentication_token = authentication_token
        self.codec = codec or EnvelopeCodec()
        self._sleep = sleep
        self._owns_http = http_client is None
        self._http = http_client or httpx.AsyncClient(
            timeout=httpx.Timeout(self.config.timeout_seconds),
        )

    async def __aenter__(self) -> SignedMessenger:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_http:
            await self._http.aclose()

    @property
    def is_verified(self) -> bool:
        return self.server_public_key is not None

    def set_authentication_token(self, token: Optional[str]) -> None:
        self.authentication_token = token

    def make_verified(self, server_public_key: ServerPublicKey) -> SignedMessenger:
        return SignedMessenger(
            self.key_pair,
            config=self.config,
            server_public_key=server_public_key,
            authentication_token=self.authentication_token,
            http_client=self._http,
            codec=self.codec,
            sleep=self._sleep,
        )

    def sign(self, body: bytes) -> str:
        return self.key_pair.sign(body)

    def verify(self, body: bytes, signature: str) -> bool:
        if self.server_public_key is None:
            raise MessengerStateError("Cannot verify a response before the server public key is known")
        return self.server_public_key.verify(body, signature)

    def _url(self, path: str) -> str:
        return f"{self.config.base_url.rstrip('/')}/{path.lstrip('/')}"

    def _headers(self, body: bytes | None) -> dict[str, str]:
        headers = {
            "User-Agent": self.config.user_agent,
            "Cache-Control": "no-cache",
        }
        if body is not None:
            headers[self.config.client_signature_header] = self.sign(body)
        if self.authentication_token:
            headers[self.config.client_authentication_header] = self.authentication_token
        return headers

    async def _send_request(self, method: str, path: str, body: bytes | None) -> httpx.Response:
        try:
            return await self._http.request(
                method,
                self._url(path),
                headers=self._headers(body),
                content=body,
            )
        except httpx.HTTPError as error:
            raise TransportError(str(error) or type(error).__name__, method=method, path=path) from error

    def _check_method(self, method: str) -> str:
        normalized = method.upper()
        if normalized not in SUPPORTED_METHODS:
            raise ValueError(f"Unsupported HTTP method {method!r}")
        return normalized

    async def send_unverified(self, method: str, path: str, body: Body = None) -> Envelope:
        """Send without checking the response signature. Only for installation."""
        method = self._check_method(method)
        response = await self._send_request(method, path, _normalize_body(body))
        return self.codec.parse(response.content, response.status_code)

    async def send(self, method: str, path: str, body: Body = None) -> Envelope:
        if self.server_public_key is None:
            raise MessengerStateError(f"{method} {path}: verified send requires the server public key")
        method = self._check_method(method)
        body_bytes = _normalize_body(body)

        async def attempt() -> httpx.Response:
            return await self._send_request(method, path, body_bytes)

        async def log_rate_limited(response: httpx.Response, attempts: int) -> None:
            LOGGER.warning(
                "Rate limited on %s %s (attempt %d), resending in %.1fs",
                method,
                path,
                attempts,
                self.config.rate_limit_delay_seconds,
            )

        try:
            response = await retry_while_rate_limited(
                attempt,
                is_rate_limited=lambda result: should_retry_http_status(result.status_code),
                delay_seconds=self.config.rate_limit_delay_seconds,
                max_retries=self.config.max_rate_limit_retries,
                sleep=self._sleep,
                on_retry=log_rate_limited,
            )
        except RetriesExhausted as error:
            raise RateLimited(method=method, path=path, attempts=error.attempts) from error

        header = self.config.server_signature_header
        signature = response.headers.get(header)
        if not signature:
            raise SignatureInvalid(f"{method} {path}: response has no {header} header")
        if not self.verify(response.content, signature):
            raise SignatureInvalid(f"{method} {path}: response signature does not match the server key")

        return self.codec.parse(response.content, response.status_code)
