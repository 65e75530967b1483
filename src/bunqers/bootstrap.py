"""Credential bootstrap: key → installation → device registration → session.

Every transition takes the current stage and returns the next one. On failure
it raises :class:`~bunqers.errors.BuildError` carrying the stage it was given,
untouched, so the caller can retry or fall back one stage with
``error.fallback()``. :class:`~bunqers.errors.SignatureInvalid` is never
wrapped.

Installation is the one exchange whose response cannot be verified: the server
key arrives in that very response, so it is trusted on first use.
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, AsyncIterator, Awaitable, Callable

import httpx

from bunqers import keys
from bunqers.config import ClientConfig
from bunqers.credentials import (
    Credential,
    Initialized,
    Installed,
    Registered,
    Session,
    UncheckedSession,
)
from bunqers.envelope import EnvelopeCodec
from bunqers.errors import (
    ApiError,
    BuildError,
    BuildErrorReason,
    EnvelopeError,
    KeyFormatError,
    RateLimited,
    TransportError,
)
from bunqers.keys import KeyPair, ServerPublicKey
from bunqers.messenger import SignedMessenger
from bunqers.types import USER_KINDS, InstallationResult, SessionResult, User, decode_id

if TYPE_CHECKING:
    from bunqers.client import SessionClient

LOGGER = logging.getLogger(__name__)

INSTALLATION_PATH = "installation"
DEVICE_SERVER_PATH = "device-server"
SESSION_SERVER_PATH = "session-server"
USER_PATH = "user"


@asynccontextmanager
async def _transition(stage: Credential) -> AsyncIterator[None]:
    try:
        yield
    except (TransportError, RateLimited) as error:
        raise BuildError(BuildErrorReason.TRANSPORT, stage, error) from error
    except ApiError as error:
        raise BuildError(BuildErrorReason.API_ERROR, stage, error) from error
    except EnvelopeError as error:
        raise BuildError(BuildErrorReason.RESPONSE, stage, error) from error


class CredentialMachine:
    """Runs stage transitions against one API base URL.

    Owns a shared ``httpx.AsyncClient`` unless one is passed in; close it with
    :meth:`aclose` or ``async with``.
    """

    def __init__(
        self,
        config: ClientConfig | None = None,
        *,
        http_client: httpx.AsyncClient | None = None,
        codec: EnvelopeCodec | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.config = config or ClientConfig()
        self.codec = codec or EnvelopeCodec()
        self.sleep = sleep
        self._owns_http = http_client is None
        self._http = http_client or httpx.AsyncClient(
            timeout=httpx.Timeout(self.config.timeout_seconds),
        )

    async def __aenter__(self) -> CredentialMachine:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_http:
            await self._http.aclose()

    def messenger(
        self,
        key_pair: KeyPair,
        *,
        server_public_key: ServerPublicKey | None = None,
        token: str | None = None,
    ) -> SignedMessenger:
        return SignedMessenger(
            key_pair,
            config=self.config,
            server_public_key=server_public_key,
            authentication_token=token,
            http_client=self._http,
            codec=self.codec,
            sleep=self.sleep,
        )

    def create_private_key(self) -> Initialized:
        # KeyGenerationError is fatal: there is no earlier stage to fall back to.
        return Initialized(key_pair=keys.generate())

    def with_private_key(self, key_pair: KeyPair) -> Initialized:
        return Initialized(key_pair=key_pair)

    async def install_device(self, credential: Initialized) -> Installed:
        try:
            public_pem = credential.key_pair.public_pem
        except (ValueError, TypeError) as error:
            raise BuildError(BuildErrorReason.KEY_SERIALIZATION, credential, error) from error
        messenger = self.messenger(credential.key_pair)
        body = {"client_public_key": public_pem}

        async with _transition(credential):
            envelope = await messenger.send_unverified("POST", INSTALLATION_PATH, body)
            result: InstallationResult = self.codec.positional(
                envelope,
                "Id",
                "Token",
                "ServerPublicKey",
                decoder=InstallationResult.from_elements,
            )

        try:
            server_public_key = keys.public_key_from_pem(result.server_public_key)
        except KeyFormatError as error:
            raise BuildError(BuildErrorReason.KEY_DESERIALIZATION, credential, error) from error

        LOGGER.info("Installed device (installation id %d)", result.installation_id)
        return Installed(
            key_pair=credential.key_pair,
            installation_token=result.token,
            server_public_key=server_public_key,
        )

    async def register_device(self, credential: Installed, api_secret: str, description: str) -> Registered:
        if not api_secret:
            raise ValueError("api_secret is required")
        messenger = self.messenger(
            credential.key_pair,
            server_public_key=credential.server_public_key,
            token=credential.installation_token,
        )
        body = {
            "description": description,
            "secret": api_secret,
            "permitted_ips": [],
        }

        async with _transition(credential):
            envelope = await messenger.send("POST", DEVICE_SERVER_PATH, body)
            registered_device_id = self.codec.single(envelope, decode_id)

        LOGGER.info("Registered device %d", registered_device_id)
        return Registered(
            key_pair=credential.key_pair,
            installation_token=credential.installation_token,
            server_public_key=credential.server_public_key,
            api_secret=api_secret,
            registered_device_id=registered_device_id,
        )

    async def create_session(self, credential: Registered, api_secret: str | None = None) -> Session:
        if api_secret and api_secret != credential.api_secret:
            raise ValueError("api_secret differs from the one the device was registered with")
        secret = credential.api_secret
        messenger = self.messenger(
            credential.key_pair,
            server_public_key=credential.server_public_key,
            token=credential.installation_token,
        )

        async with _transition(credential):
            envelope = await messenger.send("POST", SESSION_SERVER_PATH, {"secret": secret})
            result: SessionResult = self.codec.positional(
                envelope,
                "Id",
                "Token",
                USER_KINDS,
                decoder=SessionResult.from_elements,
            )

        LOGGER.info("Created session for owner %d", result.owner_id)
        return Session(
            key_pair=credential.key_pair,
            installation_token=credential.installation_token,
            server_public_key=credential.server_public_key,
            api_secret=secret,
            registered_device_id=credential.registered_device_id,
            session_token=result.token,
            owner_id=result.owner_id,
        )

    async def check_session(self, credential: UncheckedSession) -> Session:
        messenger = self.messenger(
            credential.key_pair,
            server_public_key=credential.server_public_key,
            token=credential.session_token,
        )

        async with _transition(credential):
            envelope = await messenger.send("GET", USER_PATH)
            user = self.codec.single(envelope, User.from_dict)

        if user.id != credential.owner_id:
            raise BuildError(
                BuildErrorReason.OWNER_MISMATCH,
                credential,
                ValueError(f"session belongs to user {user.id}, expected {credential.owner_id}"),
            )

        LOGGER.info("Session for owner %d is valid", user.id)
        return Session(
            key_pair=credential.key_pair,
            installation_token=credential.installation_token,
            server_public_key=credential.server_public_key,
            api_secret=credential.api_secret,
            registered_device_id=credential.registered_device_id,
            session_token=credential.session_token,
            owner_id=user.id,
        )

    def build(self, credential: Session) -> SessionClient:
        from bunqers.client import SessionClient

        messenger = self.messenger(
            credential.key_pair,
            server_public_key=credential.server_public_key,
            token=credential.session_token,
        )
        return SessionClient(credential, messenger, self)
