from __future__ import annotations

import asyncio
import dataclasses
import tempfile

import httpx
import pytest

from bunqers.connect import connect, resume
from bunqers.credential_store import CredentialStore
from bunqers.credentials import Initialized, Installed, Registered, Session, Uninitialized
from bunqers.errors import BuildError, BuildErrorReason

from bank_double import CLIENT_KEY, FakeBank, RecordingSleep, error_payload, signed_response


def test_connect_from_empty_storage_saves_every_stage(bank: FakeBank) -> None:
    bank.serve_bootstrap()
    saved = []

    async def scenario() -> Session:
        return await resume(bank.machine(), Uninitialized(), "api-secret", "laptop", save=saved.append)

    session = asyncio.run(scenario())

    assert session.owner_id == bank.owner_id
    assert [credential.stage for credential in saved] == [
        "initialized",
        "installed",
        "registered",
        "session",
    ]


def test_connect_persists_and_resumes_session(bank: FakeBank) -> None:
    bank.serve_bootstrap()

    with tempfile.TemporaryDirectory() as tmp:
        store = CredentialStore(tmp)

        async def first() -> int:
            async with await connect("api-secret", "laptop", store=store, machine=bank.machine()) as client:
                return client.owner_id

        assert asyncio.run(first()) == bank.owner_id
        assert len(bank.requests_to("POST", "installation")) == 1

        async def second() -> str:
            async with await connect("api-secret", "laptop", store=store, machine=bank.machine()) as client:
                return client.credential.session_token

        assert asyncio.run(second()) == bank.session_token
        assert len(bank.requests_to("POST", "installation")) == 1
        assert len(bank.requests_to("POST", "session-server")) == 1
        assert len(bank.requests_to("GET", "user")) == 1


def test_stale_session_falls_back_one_stage(bank: FakeBank) -> None:
    bank.serve_bootstrap()
    session = asyncio.run(resume(bank.machine(), Initialized(key_pair=CLIENT_KEY), "api-secret", "laptop"))
    bank.requests.clear()

    def user_handler(request: httpx.Request) -> httpx.Response:
        if request.headers["X-Client-Authentication"] == "expired":
            return signed_response(401, error_payload("Insufficient authorisation."))
        return signed_response(200, bank.user_payload())

    bank.route("GET", "user", user_handler)
    stale = dataclasses.replace(session, session_token="expired")
    sleep = RecordingSleep()

    renewed = asyncio.run(
        resume(bank.machine(sleep=sleep, fallback_delay_seconds=1.5), stale, "api-secret", "laptop")
    )

    assert renewed.session_token == bank.session_token
    assert sleep.delays == [1.5]
    assert len(bank.requests_to("POST", "session-server")) == 1
    assert bank.requests_to("POST", "installation") == []


def test_different_api_secret_registers_again(bank: FakeBank) -> None:
    bank.serve_bootstrap()
    session = asyncio.run(resume(bank.machine(), Initialized(key_pair=CLIENT_KEY), "api-secret", "laptop"))
    bank.requests.clear()

    renewed = asyncio.run(resume(bank.machine(), session, "new-secret", "laptop"))

    assert renewed.api_secret == "new-secret"
    assert len(bank.requests_to("POST", "device-server")) == 1
    assert bank.requests_to("POST", "installation") == []


def test_stage_failing_twice_stops_the_walk(bank: FakeBank) -> None:
    bank.serve_bootstrap()
    bank.respond("POST", "device-server", 400, error_payload("User credentials are incorrect."))

    with pytest.raises(BuildError) as info:
        asyncio.run(resume(bank.machine(), Initialized(key_pair=CLIENT_KEY), "bad-secret", "laptop"))

    assert info.value.reason is BuildErrorReason.API_ERROR
    assert isinstance(info.value.stage, Installed)
    assert len(bank.requests_to("POST", "device-server")) == 2
    assert len(bank.requests_to("POST", "installation")) == 2


def test_transport_failure_is_not_retried(bank: FakeBank) -> None:
    bank.serve_bootstrap()
    registered = asyncio.run(
        resume(bank.machine(), Initialized(key_pair=CLIENT_KEY), "api-secret", "laptop")
    ).downgrade()

    def refuse(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    bank.route("POST", "session-server", refuse)
    bank.requests.clear()

    with pytest.raises(BuildError) as info:
        asyncio.run(resume(bank.machine(), registered, "api-secret", "laptop"))

    assert info.value.reason is BuildErrorReason.TRANSPORT
    assert isinstance(info.value.stage, Registered)
    assert len(bank.requests) == 1
