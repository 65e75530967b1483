"""Top-level connect() helper: resume from storage and walk up to a live session."""

from __future__ import annotations

import logging
from typing import Callable, Optional

from bunqers.bootstrap import CredentialMachine
from bunqers.client import SessionClient
from bunqers.config import ClientConfig, resolve_config
from bunqers.credential_store import CredentialStore
from bunqers.credentials import (
    Credential,
    Initialized,
    Installed,
    Registered,
    Session,
    UncheckedSession,
    Uninitialized,
    degrade_to,
)
from bunqers.errors import BuildError, BuildErrorReason

LOGGER = logging.getLogger(__name__)


async def _advance(
    machine: CredentialMachine,
    credential: Credential,
    api_secret: str,
    description: str,
) -> Credential:
    if isinstance(credential, Uninitialized):
        return machine.create_private_key()
    if isinstance(credential, Initialized):
        return await machine.install_device(credential)
    if isinstance(credential, Installed):
        return await machine.register_device(credential, api_secret, description)
    if isinstance(credential, Registered):
        return await machine.create_session(credential, api_secret)
    if isinstance(credential, UncheckedSession):
        return await machine.check_session(credential)
    raise TypeError(f"Unexpected credential stage {type(credential).__name__}")


async def resume(
    machine: CredentialMachine,
    credential: Credential,
    api_secret: str,
    description: str,
    *,
    save: Optional[Callable[[Credential], None]] = None,
) -> Session:
    """Advance ``credential`` to a verified :class:`Session`.

    A failed transition falls back exactly one stage and walks forward again.
    A stage that fails twice, a transport failure, or a signature failure
    ends the walk with the error.
    """
    if isinstance(credential, Session):
        credential = credential.unchecked()
    if isinstance(credential, (Registered, UncheckedSession)) and credential.api_secret != api_secret:
        LOGGER.info("Stored registration uses a different API key, registering this device again")
        credential = degrade_to(credential, Installed)

    failed: set[type] = set()
    while not isinstance(credential, Session):
        try:
            credential = await _advance(machine, credential, api_secret, description)
        except BuildError as error:
            if error.reason is BuildErrorReason.TRANSPORT or type(error.stage) in failed:
                raise
            failed.add(type(error.stage))
            credential = error.fallback()
            LOGGER.warning(
                "%s transition failed (%s), falling back to %s",
                type(error.stage).__name__,
                error.reason.value,
                credential.stage,
            )
            await machine.sleep(machine.config.fallback_delay_seconds)
            continue
        LOGGER.info("Reached %s stage", credential.stage)
        if save is not None:
            save(credential)
    return credential


async def connect(
    api_secret: str,
    description: str,
    *,
    store: CredentialStore | None = None,
    machine: CredentialMachine | None = None,
    config: ClientConfig | None = None,
) -> SessionClient:
    owns_machine = machine is None
    machine = machine or CredentialMachine(config or resolve_config())
    try:
        credential = store.load() if store is not None else Uninitialized()
        session = await resume(
            machine,
            credential,
            api_secret,
            description,
            save=store.save if store is not None else None,
        )
    except BaseException:
        if owns_machine:
            await machine.aclose()
        raise
    return machine.build(session)
