"""Authenticated facade over a live session."""

from __future__ import annotations

import logging
from decimal import Decimal
from typing import TYPE_CHECKING

from bunqers.credentials import Session
from bunqers.errors import BuildError, BuildErrorReason
from bunqers.messenger import SignedMessenger
from bunqers.types import (
    Amount,
    MonetaryAccountBank,
    Multiple,
    PaymentRequest,
    PaymentRequestStatus,
    User,
    decode_id,
)

if TYPE_CHECKING:
    from bunqers.bootstrap import CredentialMachine

LOGGER = logging.getLogger(__name__)

# Reasons that mean the server looked at the session and rejected it. Transport
# failures say nothing about the session, so they are left to the caller.
SESSION_FALLBACK_REASONS = frozenset(
    {
        BuildErrorReason.API_ERROR,
        BuildErrorReason.RESPONSE,
        BuildErrorReason.OWNER_MISMATCH,
    }
)


class SessionClient:
    def __init__(self, credential: Session, messenger: SignedMessenger, machine: CredentialMachine):
        self.credential = credential
        self.messenger = messenger
        self.machine = machine

    async def __aenter__(self) -> SessionClient:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self.machine.aclose()

    @property
    def owner_id(self) -> int:
        return self.credential.owner_id

    async def ensure_session(self) -> SessionClient:
        """Return a client whose session the server has just accepted.

        A rejected session is replaced through ``create_session`` on the
        ``Registered`` stage. If that fails too, its ``BuildError`` propagates
        with the ``Registered`` credential in ``error.stage``.
        """
        try:
            session = await self.machine.check_session(self.credential.unchecked())
        except BuildError as error:
            if error.reason not in SESSION_FALLBACK_REASONS:
                raise
            LOGGER.info("Session rejected (%s), creating a new one", error.reason.value)
            session = await self.machine.create_session(error.fallback())
        return self.machine.build(session)

    def _account_path(self, monetary_account_id: int) -> str:
        return f"user/{self.owner_id}/monetary-account/{monetary_account_id}"

    async def get_user(self) -> User:
        envelope = await self.messenger.send("GET", "user")
        return self.messenger.codec.single(envelope, User.from_dict)

    async def get_monetary_accounts(self) -> Multiple[MonetaryAccountBank]:
        envelope = await self.messenger.send("GET", f"user/{self.owner_id}/monetary-account-bank")
        return self.messenger.codec.multiple(envelope, MonetaryAccountBank.from_dict)

    async def get_monetary_account(self, monetary_account_id: int) -> MonetaryAccountBank:
        envelope = await self.messenger.send(
            "GET",
            f"user/{self.owner_id}/monetary-account-bank/{monetary_account_id}",
        )
        return self.messenger.codec.single(envelope, MonetaryAccountBank.from_dict)

    async def get_payment_request(self, monetary_account_id: int, payment_request_id: int) -> PaymentRequest:
        envelope = await self.messenger.send(
            "GET",
            f"{self._account_path(monetary_account_id)}/bunqme-tab/{payment_request_id}",
        )
        return self.messenger.codec.single(envelope, PaymentRequest.from_dict)

    async def create_payment_request(
        self,
        monetary_account_id: int,
        amount: Decimal,
        description: str,
        redirect_url: str,
        currency: str = "EUR",
    ) -> int:
        body = {
            "bunqme_tab_entry": {
                "amount_inquired": Amount(value=Decimal(amount), currency=currency).to_dict(),
                "description": description,
                "redirect_url": redirect_url,
            },
        }
        envelope = await self.messenger.send("POST", f"{self._account_path(monetary_account_id)}/bunqme-tab", body)
        return self.messenger.codec.single(envelope, decode_id)

    async def close_payment_request(self, monetary_account_id: int, payment_request_id: int) -> int:
        envelope = await self.messenger.send(
            "PUT",
            f"{self._account_path(monetary_account_id)}/bunqme-tab/{payment_request_id}",
            {"status": PaymentRequestStatus.CANCELLED.value},
        )
        return self.messenger.codec.single(envelope, decode_id)
