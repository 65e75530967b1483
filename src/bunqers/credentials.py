"""Credential stages from a bare key to a live session.

Each stage is its own frozen dataclass carrying exactly the fields valid at
that stage; ``Credential`` is their union. Stages never inherit from each
other, so ``isinstance`` checks identify exactly one stage. Transitions live in
:mod:`bunqers.bootstrap`; this module only holds the values, the lossless
``downgrade`` between them, and conversion to the flat storage record.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, ClassVar, Mapping, Type, TypeVar, Union

from bunqers.errors import CredentialStoreError
from bunqers.keys import KeyPair, ServerPublicKey, private_key_from_pem, public_key_from_pem
from bunqers.types import JsonDict

RECORD_VERSION = 1


@dataclass(frozen=True)
class Uninitialized:
    stage: ClassVar[str] = "uninitialized"

    def downgrade(self) -> Uninitialized:
        raise ValueError("Uninitialized credential has no earlier stage")


@dataclass(frozen=True)
class Initialized:
    key_pair: KeyPair

    stage: ClassVar[str] = "initialized"

    def downgrade(self) -> Uninitialized:
        return Uninitialized()


@dataclass(frozen=True)
class Installed:
    key_pair: KeyPair
    installation_token: str = field(repr=False)
    server_public_key: ServerPublicKey

    stage: ClassVar[str] = "installed"

    def downgrade(self) -> Initialized:
        return Initialized(key_pair=self.key_pair)


@dataclass(frozen=True)
class Registered:
    key_pair: KeyPair
    installation_token: str = field(repr=False)
    server_public_key: ServerPublicKey
    api_secret: str = field(repr=False)
    registered_device_id: int

    stage: ClassVar[str] = "registered"

    def downgrade(self) -> Installed:
        return Installed(
            key_pair=self.key_pair,
            installation_token=self.installation_token,
            server_public_key=self.server_public_key,
        )


@dataclass(frozen=True)
class UncheckedSession:
    """Loaded from storage; nobody has asked the server whether it still works."""

    key_pair: KeyPair
    installation_token: str = field(repr=False)
    server_public_key: ServerPublicKey
    api_secret: str = field(repr=False)
    registered_device_id: int
    session_token: str = field(repr=False)
    owner_id: int

    stage: ClassVar[str] = "unchecked_session"

    def downgrade(self) -> Registered:
        return Registered(
            key_pair=self.key_pair,
            installation_token=self.installation_token,
            server_public_key=self.server_public_key,
            api_secret=self.api_secret,
            registered_device_id=self.registered_device_id,
        )


@dataclass(frozen=True)
class Session:
    key_pair: KeyPair
    installation_token: str = field(repr=False)
    server_public_key: ServerPublicKey
    api_secret: str = field(repr=False)
    registered_device_id: int
    session_token: str = field(repr=False)
    owner_id: int

    stage: ClassVar[str] = "session"

    def downgrade(self) -> Registered:
        return Registered(
            key_pair=self.key_pair,
            installation_token=self.installation_token,
            server_public_key=self.server_public_key,
            api_secret=self.api_secret,
            registered_device_id=self.registered_device_id,
        )

    def unchecked(self) -> UncheckedSession:
        return UncheckedSession(
            key_pair=self.key_pair,
            installation_token=self.installation_token,
            server_public_key=self.server_public_key,
            api_secret=self.api_secret,
            registered_device_id=self.registered_device_id,
            session_token=self.session_token,
            owner_id=self.owner_id,
        )


Credential = Union[Uninitialized, Initialized, Installed, Registered, UncheckedSession, Session]

C = TypeVar("C", Uninitialized, Initialized, Installed, Registered)

STAGE_ORDER: tuple[type, ...] = (Uninitialized, Initialized, Installed, Registered, UncheckedSession, Session)

_RANK: dict[type, int] = {
    Uninitialized: 0,
    Initialized: 1,
    Installed: 2,
    Registered: 3,
    UncheckedSession: 4,
    Session: 4,
}


def rank(credential: Credential) -> int:
    return _RANK[type(credential)]


def degrade_to(credential: Credential, target: Type[C]) -> C:
    """Drop fields until ``credential`` is a ``target``."""
    if _RANK[target] > rank(credential):
        raise ValueError(f"Cannot degrade {type(credential).__name__} up to {target.__name__}")
    current: Any = credential
    while not isinstance(current, target):
        current = current.downgrade()
    return current


def to_record(credential: Credential) -> JsonDict:
    record = JsonDict({
        "version": RECORD_VERSION,
        "stage": credential.stage,
        "private_key": None,
        "installation_token": None,
        "server_public_key": None,
        "api_secret": None,
        "registered_device_id": None,
        "session_token": None,
        "owner_id": None,
    })
    if isinstance(credential, Uninitialized):
        return record

    record["private_key"] = credential.key_pair.private_pem
    if isinstance(credential, Initialized):
        return record

    record["installation_token"] = credential.installation_token
    record["server_public_key"] = credential.server_public_key.pem
    if isinstance(credential, Installed):
        return record

    record["api_secret"] = credential.api_secret
    record["registered_device_id"] = credential.registered_device_id
    if isinstance(credential, Registered):
        return record

    record["session_token"] = credential.session_token
    record["owner_id"] = credential.owner_id
    return record


def _int_or_none(value: Any) -> int | None:
    if isinstance(value, bool) or not isinstance(value, int):
        return None
    return value


def from_record(raw: Mapping[str, Any]) -> Credential:
    """Rebuild the furthest complete stage the record describes.

    A stored session always comes back as :class:`UncheckedSession`. Malformed
    PEM raises :class:`~bunqers.errors.KeyFormatError`.
    """
    version = raw.get("version", RECORD_VERSION)
    if version != RECORD_VERSION:
        raise CredentialStoreError(f"Unsupported credential record version {version!r}")

    private_pem = raw.get("private_key")
    if not private_pem:
        return Uninitialized()
    key_pair = private_key_from_pem(str(private_pem))

    installation_token = raw.get("installation_token")
    server_pem = raw.get("server_public_key")
    if not installation_token or not server_pem:
        return Initialized(key_pair=key_pair)
    installed = Installed(
        key_pair=key_pair,
        installation_token=str(installation_token),
        server_public_key=public_key_from_pem(str(server_pem)),
    )

    api_secret = raw.get("api_secret")
    device_id = _int_or_none(raw.get("registered_device_id"))
    if not api_secret or device_id is None:
        return installed
    registered = Registered(
        key_pair=key_pair,
        installation_token=installed.installation_token,
        server_public_key=installed.server_public_key,
        api_secret=str(api_secret),
        registered_device_id=device_id,
    )

    session_token = raw.get("session_token")
    owner_id = _int_or_none(raw.get("owner_id"))
    if not session_token or owner_id is None:
        return registered
    return UncheckedSession(
        key_pair=key_pair,
        installation_token=registered.installation_token,
        server_public_key=registered.server_public_key,
        api_secret=registered.api_secret,
        registered_device_id=device_id,
        session_token=str(session_token),
        owner_id=owner_id,
    )
