from __future__ import annotations

import asyncio
import json
from datetime import datetime
from decimal import Decimal

import httpx
import pytest

from bunqers import keys
from bunqers.client import SessionClient
from bunqers.credentials import Registered, Session
from bunqers.errors import ApiError, BuildError, BuildErrorReason
from bunqers.types import PaymentRequestStatus

from bank_double import CLIENT_KEY, SERVER_KEY, FakeBank, error_payload

SERVER_PUBLIC = keys.public_key_from_pem(SERVER_KEY.public_pem)
OWNER_ID = 42


def _session(token: str = "old-session-token") -> Session:
    return Session(
        key_pair=CLIENT_KEY,
        installation_token="installation-token",
        server_public_key=SERVER_PUBLIC,
        api_secret="api-secret",
        registered_device_id=7,
        session_token=token,
        owner_id=OWNER_ID,
    )


def _client(bank: FakeBank, session: Session | None = None) -> SessionClient:
    return bank.machine().build(session or _session())


def _account(account_id: int, value: str = "100.00") -> dict:
    return {
        "MonetaryAccountBank": {
            "id": account_id,
            "description": f"Account {account_id}",
            "currency": "EUR",
            "status": "ACTIVE",
            "balance": {"value": value, "currency": "EUR"},
        }
    }


def test_ensure_session_keeps_a_working_session(bank: FakeBank) -> None:
    bank.serve_bootstrap()

    client = asyncio.run(_client(bank).ensure_session())

    assert client.credential == _session()
    assert bank.requests_to("POST", "session-server") == []


def test_ensure_session_replaces_rejected_session(bank: FakeBank) -> None:
    bank.serve_bootstrap()
    bank.respond("GET", "user", 401, error_payload("Insufficient authorisation."))

    client = asyncio.run(_client(bank).ensure_session())

    assert client.credential.session_token == bank.session_token
    assert client.credential.owner_id == OWNER_ID
    assert client.messenger.authentication_token == bank.session_token
    session_request = bank.requests_to("POST", "session-server")[0]
    assert session_request.headers["X-Client-Authentication"] == "installation-token"
    assert json.loads(session_request.content) == {"secret": "api-secret"}


def test_ensure_session_reports_registered_stage_when_recreate_fails(bank: FakeBank) -> None:
    bank.respond("GET", "user", 401, error_payload("Insufficient authorisation."))
    bank.respond("POST", "session-server", 400, error_payload("User credentials are incorrect."))

    with pytest.raises(BuildError) as info:
        asyncio.run(_client(bank).ensure_session())

    error = info.value
    assert error.reason is BuildErrorReason.API_ERROR
    assert isinstance(error.stage, Registered)
    assert error.stage == _session().downgrade()
    assert error.stage.registered_device_id == 7
    assert error.stage.installation_token == "installation-token"


def test_ensure_session_does_not_fall_back_on_transport_failure(bank: FakeBank) -> None:
    def refuse(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadError("connection reset", request=request)

    bank.route("GET", "user", refuse)

    with pytest.raises(BuildError) as info:
        asyncio.run(_client(bank).ensure_session())

    assert info.value.reason is BuildErrorReason.TRANSPORT
    assert bank.requests_to("POST", "session-server") == []


def test_get_user(bank: FakeBank) -> None:
    bank.respond("GET", "user", 200, {"Response": [{"UserCompany": {"id": OWNER_ID, "display_name": "ACME"}}]})

    user = asyncio.run(_client(bank).get_user())

    assert user.id == OWNER_ID
    assert user.display_name == "ACME"
    assert user.kind == "UserCompany"
    assert bank.requests[0].headers["X-Client-Authentication"] == "old-session-token"


def test_get_monetary_accounts(bank: FakeBank) -> None:
    bank.respond(
        "GET",
        f"user/{OWNER_ID}/monetary-account-bank",
        200,
        {
            "Response": [_account(1), _account(2, "0.50")],
            "Pagination": {"future_url": None, "newer_url": None, "older_url": None},
        },
    )

    accounts = asyncio.run(_client(bank).get_monetary_accounts())

    assert [account.id for account in accounts] == [1, 2]
    assert accounts.items[1].balance.value == Decimal("0.50")
    assert accounts.pagination.older_url is None


def test_get_monetary_account(bank: FakeBank) -> None:
    bank.respond("GET", f"user/{OWNER_ID}/monetary-account-bank/5", 200, {"Response": [_account(5)]})

    account = asyncio.run(_client(bank).get_monetary_account(5))

    assert account.id == 5
    assert account.balance.currency == "EUR"


def test_create_payment_request_sends_amount_and_returns_id(bank: FakeBank) -> None:
    path = f"user/{OWNER_ID}/monetary-account/5/bunqme-tab"
    bank.respond("POST", path, 200, {"Response": [{"Id": {"id": 77}}]})

    request_id = asyncio.run(
        _client(bank).create_payment_request(5, Decimal("12.5"), "Dinner", "https://example.com/done")
    )

    assert request_id == 77
    body = json.loads(bank.requests_to("POST", path)[0].content)
    assert body == {
        "bunqme_tab_entry": {
            "amount_inquired": {"value": "12.50", "currency": "EUR"},
            "description": "Dinner",
            "redirect_url": "https://example.com/done",
        }
    }


def test_get_payment_request(bank: FakeBank) -> None:
    bank.respond(
        "GET",
        f"user/{OWNER_ID}/monetary-account/5/bunqme-tab/77",
        200,
        {
            "Response": [
                {
                    "BunqMeTab": {
                        "id": 77,
                        "created": "2024-01-02 10:00:00.000000",
                        "updated": "2024-01-02 10:05:00.123456",
                        "time_expiry": "2024-01-09 10:00:00.000000",
                        "monetary_account_id": 5,
                        "status": "WAITING_FOR_PAYMENT",
                        "bunqme_tab_share_url": "https://bunq.me/t/abc",
                    }
                }
            ]
        },
    )

    payment_request = asyncio.run(_client(bank).get_payment_request(5, 77))

    assert payment_request.status is PaymentRequestStatus.WAITING_FOR_PAYMENT
    assert payment_request.updated == datetime(2024, 1, 2, 10, 5, 0, 123456)
    assert payment_request.share_url == "https://bunq.me/t/abc"


def test_close_payment_request_puts_cancelled_status(bank: FakeBank) -> None:
    path = f"user/{OWNER_ID}/monetary-account/5/bunqme-tab/77"
    bank.respond("PUT", path, 200, {"Response": [{"Id": {"id": 77}}]})

    assert asyncio.run(_client(bank).close_payment_request(5, 77)) == 77
    assert json.loads(bank.requests_to("PUT", path)[0].content) == {"status": "CANCELLED"}


def test_api_errors_surface_from_business_calls(bank: FakeBank) -> None:
    bank.respond("GET", f"user/{OWNER_ID}/monetary-account-bank/9", 404, error_payload("Account not found."))

    with pytest.raises(ApiError) as info:
        asyncio.run(_client(bank).get_monetary_account(9))

    assert info.value.status_code == 404
    assert info.value.errors[0].description == "Account not found."
