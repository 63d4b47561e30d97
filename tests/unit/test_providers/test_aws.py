"""
Tests for the Cost Explorer client.

Requests go through httpx.MockTransport backed by a canned Cost Explorer
stub (see conftest.py), so the full signing and parsing path is exercised.
"""

from datetime import date

import httpx
import pytest

from billing_monitor.models import Account
from billing_monitor.providers.aws import (
    BillingPeriod,
    CostExplorerClient,
    add_months,
    parse_amount,
    parse_monthly_costs,
    parse_service_costs,
)
from billing_monitor.providers.base import APIError, CredentialsNotFound, InvalidResponse, NotConfigured
from conftest import NOW, TODAY, ce_group, ce_result


class TestDateHelpers:
    """Test cases for date range helpers."""

    @pytest.mark.parametrize(
        "day,months,expected",
        [
            (date(2024, 3, 15), -1, date(2024, 2, 1)),
            (date(2024, 3, 15), 1, date(2024, 4, 1)),
            (date(2024, 1, 31), -1, date(2023, 12, 1)),
            (date(2024, 12, 5), 1, date(2025, 1, 1)),
            (date(2024, 3, 15), -5, date(2023, 10, 1)),
        ],
    )
    def test_add_months(self, day, months, expected):
        assert add_months(day, months) == expected

    def test_billing_period(self):
        period = BillingPeriod(today=date(2024, 3, 15))

        assert period.tomorrow == date(2024, 3, 16)
        assert period.month_start == date(2024, 3, 1)
        assert period.last_month_start == date(2024, 2, 1)
        assert period.next_month_start == date(2024, 4, 1)
        assert period.history_start == date(2023, 10, 1)
        assert period.current_month == "2024-03"
        assert period.is_last_day_of_month is False

    def test_last_day_of_month(self):
        assert BillingPeriod(today=date(2024, 2, 29)).is_last_day_of_month is True
        assert BillingPeriod(today=date(2024, 12, 31)).is_last_day_of_month is True


class TestParsing:
    """Test cases for response parsing helpers."""

    @pytest.mark.parametrize(
        "value,expected",
        [("12.34", 12.34), ("0", 0.0), (5, 5.0), ("abc", None), (None, None), ("NaN", None), ("inf", None)],
    )
    def test_parse_amount(self, value, expected):
        assert parse_amount(value) == expected

    def test_monthly_costs_flag_current_month_incomplete(self):
        months = parse_monthly_costs(
            {
                "ResultsByTime": [
                    ce_result("2024-03-01", "2024-03-16", "5"),
                    ce_result("2024-02-01", "2024-03-01", "10"),
                ]
            },
            "2024-03",
        )

        assert [(month.month, month.is_complete) for month in months] == [
            ("2024-02", True),
            ("2024-03", False),
        ]

    def test_service_costs_aggregated_across_periods(self):
        costs = parse_service_costs(
            {
                "ResultsByTime": [
                    {"Groups": [ce_group("Amazon S3", "1.5"), ce_group("AWS Lambda", "bad")]},
                    {"Groups": [ce_group("Amazon S3", "2.5")]},
                ]
            }
        )

        assert costs == [("Amazon S3", 4.0)]

    def test_missing_results_is_empty(self):
        assert parse_service_costs({}) == []


class TestFetchBilling:
    """Test cases for CostExplorerClient.fetch_billing."""

    async def test_snapshot_values(self, cost_explorer_client, sample_account):
        snapshot = await cost_explorer_client.fetch_billing(sample_account)

        assert snapshot.account_id == "123456789012"
        assert snapshot.account_name == "Production"
        assert snapshot.month_to_date_cost == 60.0
        assert snapshot.last_month_cost == 90.0
        assert snapshot.forecasted_month_cost == 45.0
        assert snapshot.projected_month_total == 105.0
        assert snapshot.daily_average_cost == 4.0
        assert snapshot.currency == "USD"
        assert snapshot.updated_at == NOW
        assert snapshot.month_over_month_change == pytest.approx(-33.333, rel=1e-3)

    async def test_service_breakdown(self, cost_explorer_client, sample_account):
        snapshot = await cost_explorer_client.fetch_billing(sample_account)

        assert [(service.service_name, service.percentage) for service in snapshot.cost_by_service] == [
            ("Amazon Elastic Compute Cloud - Compute", 50.0),
            ("AWS Lambda", 25.0),
        ]

    async def test_daily_and_monthly_history(self, cost_explorer_client, sample_account):
        snapshot = await cost_explorer_client.fetch_billing(sample_account)

        assert [day.date for day in snapshot.daily_costs] == [
            date(2024, 3, 1),
            date(2024, 3, 2),
            date(2024, 3, 3),
        ]
        assert [month.month for month in snapshot.monthly_costs] == [
            "2023-10",
            "2023-11",
            "2023-12",
            "2024-01",
            "2024-02",
            "2024-03",
        ]
        assert [month.is_complete for month in snapshot.monthly_costs] == [True] * 5 + [False]

    async def test_requests_are_sequential_in_order(self, cost_explorer_client, ce_stub, sample_account):
        await cost_explorer_client.fetch_billing(sample_account)

        assert ce_stub.kinds() == ["daily", "last_month", "services", "history", "forecast"]

    async def test_request_bodies(self, cost_explorer_client, ce_stub, sample_account):
        await cost_explorer_client.fetch_billing(sample_account)

        assert ce_stub.bodies("daily") == [
            {
                "TimePeriod": {"Start": "2024-03-01", "End": "2024-03-16"},
                "Granularity": "DAILY",
                "Metrics": ["UnblendedCost"],
            }
        ]
        assert ce_stub.bodies("last_month")[0]["TimePeriod"] == {"Start": "2024-02-01", "End": "2024-03-01"}
        assert ce_stub.bodies("last_month")[0]["Granularity"] == "MONTHLY"
        assert ce_stub.bodies("services")[0]["GroupBy"] == [{"Type": "DIMENSION", "Key": "SERVICE"}]
        assert ce_stub.bodies("services")[0]["TimePeriod"] == {"Start": "2024-03-01", "End": "2024-03-16"}
        assert ce_stub.bodies("history")[0]["TimePeriod"] == {"Start": "2023-10-01", "End": "2024-03-16"}
        assert ce_stub.bodies("forecast") == [
            {
                "TimePeriod": {"Start": "2024-03-16", "End": "2024-04-01"},
                "Metric": "UNBLENDED_COST",
                "Granularity": "MONTHLY",
            }
        ]

    async def test_request_headers(self, cost_explorer_client, ce_stub, sample_account):
        await cost_explorer_client.fetch_billing(sample_account)

        request = ce_stub.requests[0]
        assert str(request.url) == "https://ce.us-east-1.amazonaws.com/"
        assert request.method == "POST"
        assert request.headers["Content-Type"] == "application/x-amz-json-1.1"
        assert request.headers["X-Amz-Target"] == "AWSInsightsIndexService.GetCostAndUsage"
        assert request.headers["X-Amz-Date"] == "20240315T120000Z"
        assert request.headers["Authorization"].startswith(
            "AWS4-HMAC-SHA256 Credential=AKIDEXAMPLE/20240315/us-east-1/ce/aws4_request, "
        )
        assert ce_stub.requests[-1].headers["X-Amz-Target"] == "AWSInsightsIndexService.GetCostForecast"

    async def test_session_token_sent(
        self, cost_explorer_client, ce_stub, fake_provider, session_credentials, sample_account
    ):
        fake_provider.credentials = session_credentials

        await cost_explorer_client.fetch_billing(sample_account)

        for request in ce_stub.requests:
            assert request.headers["X-Amz-Security-Token"] == session_credentials.session_token
            assert "x-amz-security-token" in request.headers["Authorization"]

    async def test_region_selects_endpoint(self, cost_explorer_client, ce_stub):
        account = Account(name="EU", account_id="444444444444", region="eu-west-1")

        await cost_explorer_client.fetch_billing(account)

        assert {request.url.host for request in ce_stub.requests} == {"ce.eu-west-1.amazonaws.com"}
        assert "/eu-west-1/ce/aws4_request" in ce_stub.requests[0].headers["Authorization"]

    async def test_credentials_resolved_once_per_fetch(self, cost_explorer_client, fake_provider, sample_account):
        await cost_explorer_client.fetch_billing(sample_account)
        await cost_explorer_client.fetch_billing(sample_account)

        assert fake_provider.calls == ["prod"]


class TestForecast:
    """Test cases for forecast handling."""

    async def test_forecast_failure_is_swallowed(self, cost_explorer_client, ce_stub, sample_account):
        ce_stub.failures["forecast"] = (400, '{"__type":"DataUnavailableException"}')

        snapshot = await cost_explorer_client.fetch_billing(sample_account)

        assert snapshot.forecasted_month_cost is None
        assert snapshot.month_to_date_cost == 60.0

    async def test_forecast_without_amount(self, cost_explorer_client, ce_stub, sample_account):
        ce_stub.responses["forecast"] = {"Total": {}}

        snapshot = await cost_explorer_client.fetch_billing(sample_account)

        assert snapshot.forecasted_month_cost is None

    async def test_forecast_skipped_on_last_day_of_month(self, credential_cache, ce_stub, clock, sample_account):
        client = CostExplorerClient(
            credential_cache,
            http_client=httpx.AsyncClient(transport=ce_stub.transport()),
            today=lambda: date(2024, 3, 31),
            clock=clock,
        )
        try:
            snapshot = await client.fetch_billing(sample_account)
        finally:
            await client.aclose()

        assert snapshot.forecasted_month_cost is None
        assert "forecast" not in ce_stub.kinds()
        assert len(ce_stub.requests) == 4


class TestErrors:
    """Test cases for error propagation."""

    async def test_non_200_is_api_error(self, cost_explorer_client, ce_stub, sample_account):
        ce_stub.failures["daily"] = (403, "AccessDeniedException")

        with pytest.raises(APIError) as exc_info:
            await cost_explorer_client.fetch_billing(sample_account)

        assert exc_info.value.status_code == 403
        assert exc_info.value.body == "AccessDeniedException"
        assert "HTTP 403" in str(exc_info.value)
        # No further calls after the failed one
        assert len(ce_stub.requests) == 1

    async def test_failure_in_later_call_fails_whole_fetch(self, cost_explorer_client, ce_stub, sample_account):
        ce_stub.failures["history"] = (500, "InternalError")

        with pytest.raises(APIError):
            await cost_explorer_client.fetch_billing(sample_account)

        assert ce_stub.kinds() == ["daily", "last_month", "services", "history"]

    async def test_non_object_json_is_invalid_response(self, cost_explorer_client, ce_stub, sample_account):
        ce_stub.responses["daily"] = ["not", "an", "object"]

        with pytest.raises(InvalidResponse):
            await cost_explorer_client.fetch_billing(sample_account)

    async def test_results_not_a_list_is_invalid_response(self, cost_explorer_client, ce_stub, sample_account):
        ce_stub.responses["last_month"] = {"ResultsByTime": "nope"}

        with pytest.raises(InvalidResponse):
            await cost_explorer_client.fetch_billing(sample_account)

    async def test_non_json_body_is_invalid_response(self, credential_cache, sample_account):
        transport = httpx.MockTransport(lambda request: httpx.Response(200, text="<html>oops</html>"))
        client = CostExplorerClient(
            credential_cache, http_client=httpx.AsyncClient(transport=transport), today=lambda: TODAY
        )
        try:
            with pytest.raises(InvalidResponse):
                await client.fetch_billing(sample_account)
        finally:
            await client.aclose()

    async def test_transport_error_is_api_error(self, credential_cache, sample_account):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        client = CostExplorerClient(
            credential_cache,
            http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
            today=lambda: TODAY,
        )
        try:
            with pytest.raises(APIError) as exc_info:
                await client.fetch_billing(sample_account)
        finally:
            await client.aclose()

        assert exc_info.value.status_code is None

    async def test_unparseable_amounts_are_skipped(self, cost_explorer_client, ce_stub, sample_account):
        ce_stub.responses["daily"] = {
            "ResultsByTime": [
                ce_result("2024-03-01", "2024-03-02", "10.0"),
                ce_result("2024-03-02", "2024-03-03", "not-a-number"),
                {"TimePeriod": {"Start": "2024-03-03", "End": "2024-03-04"}, "Total": {}},
                ce_result("2024-03-04", "2024-03-05", "5.0"),
            ]
        }

        snapshot = await cost_explorer_client.fetch_billing(sample_account)

        assert snapshot.month_to_date_cost == 15.0
        assert [day.date.day for day in snapshot.daily_costs] == [1, 4]

    async def test_missing_credentials(self, cost_explorer_client, ce_stub, fake_provider, sample_account):
        fake_provider.credentials = None
        fake_provider.by_profile.clear()

        with pytest.raises(CredentialsNotFound):
            await cost_explorer_client.fetch_billing(sample_account)

        assert ce_stub.requests == []

    async def test_missing_region(self, cost_explorer_client, ce_stub):
        account = Account(name="No region", account_id="1", region="")

        with pytest.raises(NotConfigured):
            await cost_explorer_client.fetch_billing(account)

        assert ce_stub.requests == []
