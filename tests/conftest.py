"""
Pytest configuration and shared fixtures for aws-billing-monitor tests.

This module provides common fixtures used across the test modules: fake
credential providers, sample accounts and credentials, and a canned Cost
Explorer backend served through httpx.MockTransport.
"""

import asyncio
import json
import os
from collections.abc import Generator
from datetime import date, datetime, timedelta, timezone
from typing import Any

import httpx
import pytest

from billing_monitor.models.account import Account, AccountColor, Credentials
from billing_monitor.providers.aws import CostExplorerClient
from billing_monitor.utils.auth import CredentialProvider
from billing_monitor.utils.cache import CredentialCache

TODAY = date(2024, 3, 15)
NOW = datetime(2024, 3, 15, 12, 0, 0, tzinfo=timezone.utc)


# Pytest configuration
def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line("markers", "unit: mark test as a unit test")
    config.addinivalue_line("markers", "aws: mark test as AWS-specific")


class FakeCredentialProvider(CredentialProvider):
    """In-memory credential provider that records every call."""

    def __init__(self, credentials: Credentials | None = None, delay: float = 0.0):
        self.credentials = credentials
        self.by_profile: dict[str, Credentials | None] = {}
        self.error: Exception | None = None
        self.delay = delay
        self.calls: list[str | None] = []
        self.profiles = ["default", "prod", "staging"]

    @property
    def provider_name(self) -> str:
        return "fake"

    async def resolve(self, profile: str | None) -> Credentials | None:
        self.calls.append(profile)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        if profile in self.by_profile:
            return self.by_profile[profile]
        return self.credentials

    async def list_profiles(self) -> list[str]:
        return list(self.profiles)


class MutableClock:
    """Clock whose current time can be moved forward in tests."""

    def __init__(self, now: datetime = NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


def ce_result(start: str, end: str, amount: Any) -> dict[str, Any]:
    """One ResultsByTime record."""
    return {
        "TimePeriod": {"Start": start, "End": end},
        "Total": {"UnblendedCost": {"Amount": amount, "Unit": "USD"}},
        "Estimated": False,
    }


def ce_group(service: str, amount: Any) -> dict[str, Any]:
    return {"Keys": [service], "Metrics": {"UnblendedCost": {"Amount": amount, "Unit": "USD"}}}


class CostExplorerStub:
    """
    Canned Cost Explorer backend.

    Requests are routed by X-Amz-Target and body shape to one of five kinds:
    daily, last_month, services, history and forecast. Each kind can be
    given a failure status to simulate upstream errors.
    """

    def __init__(self, today: date = TODAY):
        self.today = today
        self.month_start = today.replace(day=1).isoformat()
        self.requests: list[httpx.Request] = []
        self.failures: dict[str, tuple[int, str]] = {}
        self.responses: dict[str, Any] = {
            "daily": {
                "ResultsByTime": [
                    ce_result("2024-03-01", "2024-03-02", "10.0"),
                    ce_result("2024-03-02", "2024-03-03", "20.0"),
                    ce_result("2024-03-03", "2024-03-04", "30.0"),
                ]
            },
            "last_month": {"ResultsByTime": [ce_result("2024-02-01", "2024-03-01", "90.0")]},
            "services": {
                "ResultsByTime": [
                    {
                        "TimePeriod": {"Start": "2024-03-01", "End": "2024-03-16"},
                        "Total": {},
                        "Groups": [
                            ce_group("AWS Lambda", "15.0"),
                            ce_group("Amazon Elastic Compute Cloud - Compute", "30.0"),
                            ce_group("Amazon Simple Storage Service", "0"),
                            ce_group("Tax", "-1.5"),
                        ],
                    }
                ]
            },
            "history": {
                "ResultsByTime": [
                    ce_result("2023-10-01", "2023-11-01", "70.0"),
                    ce_result("2023-11-01", "2023-12-01", "75.0"),
                    ce_result("2023-12-01", "2024-01-01", "80.0"),
                    ce_result("2024-01-01", "2024-02-01", "85.0"),
                    ce_result("2024-02-01", "2024-03-01", "90.0"),
                    ce_result("2024-03-01", "2024-03-16", "60.0"),
                ]
            },
            "forecast": {
                "Total": {"Amount": "45.0", "Unit": "USD"},
                "ForecastResultsByTime": [],
            },
        }

    def kind(self, request: httpx.Request) -> str:
        target = request.headers["X-Amz-Target"]
        if target.endswith(".GetCostForecast"):
            return "forecast"
        body = json.loads(request.content)
        if "GroupBy" in body:
            return "services"
        if body["Granularity"] == "DAILY":
            return "daily"
        if body["TimePeriod"]["End"] == self.month_start:
            return "last_month"
        return "history"

    def kinds(self) -> list[str]:
        return [self.kind(request) for request in self.requests]

    def bodies(self, kind: str) -> list[dict[str, Any]]:
        return [json.loads(request.content) for request in self.requests if self.kind(request) == kind]

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        kind = self.kind(request)
        if kind in self.failures:
            status, body = self.failures[kind]
            return httpx.Response(status, text=body)
        return httpx.Response(200, json=self.responses[kind])

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)


@pytest.fixture
def clean_env(monkeypatch) -> Generator[None, None, None]:
    """Provide an environment without AWS or billing monitor settings."""
    for var in list(os.environ):
        if var.startswith(("AWS_", "BILLINGMON_")):
            monkeypatch.delenv(var, raising=False)
    yield


@pytest.fixture
def permanent_credentials() -> Credentials:
    return Credentials(
        access_key_id="AKIDEXAMPLE",
        secret_access_key="wJalrXUtnFEMI/K7MDENG+bPxRfiCYEXAMPLEKEY",
    )


@pytest.fixture
def session_credentials() -> Credentials:
    return Credentials(
        access_key_id="ASIAEXAMPLE",
        secret_access_key="wJalrXUtnFEMI/K7MDENG+bPxRfiCYEXAMPLEKEY",
        session_token="FwoGZXIvYXdzEXAMPLETOKEN",
        expiration=NOW + timedelta(hours=6),
    )


@pytest.fixture
def fake_provider(permanent_credentials) -> FakeCredentialProvider:
    return FakeCredentialProvider(permanent_credentials)


@pytest.fixture
def clock() -> MutableClock:
    return MutableClock()


@pytest.fixture
def credential_cache(fake_provider, clock) -> CredentialCache:
    return CredentialCache(fake_provider, clock=clock)


@pytest.fixture
def sample_account() -> Account:
    return Account(
        id="acct-prod",
        name="Production",
        account_id="123456789012",
        profile_name="prod",
        region="us-east-1",
        color=AccountColor.RED,
    )


@pytest.fixture
def sample_accounts() -> list[Account]:
    return [
        Account(id="acct-1", name="Production", account_id="111111111111", profile_name="prod"),
        Account(id="acct-2", name="Staging", account_id="222222222222", profile_name="staging"),
        Account(id="acct-3", name="Development", account_id="333333333333"),
    ]


@pytest.fixture
def ce_stub() -> CostExplorerStub:
    return CostExplorerStub()


@pytest.fixture
async def cost_explorer_client(credential_cache, ce_stub, clock):
    """CostExplorerClient wired to the canned backend."""
    http_client = httpx.AsyncClient(transport=ce_stub.transport())
    client = CostExplorerClient(
        credential_cache,
        http_client=http_client,
        today=lambda: TODAY,
        clock=clock,
    )
    yield client
    await client.aclose()
