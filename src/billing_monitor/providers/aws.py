"""
AWS Cost Explorer client.

Talks to the Cost Explorer JSON API directly over HTTPS with SigV4-signed
requests and turns the responses into BillingSnapshot values.
"""

import json
import logging
import math
from collections.abc import Callable
from datetime import date, datetime, timedelta
from typing import Any

import httpx
from pydantic import BaseModel, ConfigDict

from ..models.account import Account, Credentials
from ..models.billing import BillingSnapshot, DailyCost, MonthlyCost, ServiceCost
from ..utils.cache import CredentialCache, utc_now
from .base import APIError, InvalidResponse, NotConfigured
from .signer import RequestSigner

logger = logging.getLogger(__name__)

SERVICE_NAME = "ce"
TARGET_PREFIX = "AWSInsightsIndexService"
CONTENT_TYPE = "application/x-amz-json-1.1"
DEFAULT_ENDPOINT = "https://ce.{region}.amazonaws.com/"
COST_METRIC = "UnblendedCost"
FORECAST_METRIC = "UNBLENDED_COST"
HISTORY_MONTHS = 6


def add_months(day: date, months: int) -> date:
    """First day of the month `months` away from the month containing `day`."""
    index = day.year * 12 + (day.month - 1) + months
    return date(index // 12, index % 12 + 1, 1)


class BillingPeriod(BaseModel):
    """Date boundaries for one fetch. Cost Explorer end dates are exclusive."""

    model_config = ConfigDict(frozen=True)

    today: date

    @property
    def tomorrow(self) -> date:
        return self.today + timedelta(days=1)

    @property
    def month_start(self) -> date:
        return self.today.replace(day=1)

    @property
    def last_month_start(self) -> date:
        return add_months(self.today, -1)

    @property
    def next_month_start(self) -> date:
        return add_months(self.today, 1)

    @property
    def history_start(self) -> date:
        # Six calendar months including the current one, not six full
        # months before it
        return add_months(self.today, -(HISTORY_MONTHS - 1))

    @property
    def is_last_day_of_month(self) -> bool:
        return self.tomorrow == self.next_month_start

    @property
    def current_month(self) -> str:
        return self.today.strftime("%Y-%m")


def parse_amount(value: Any) -> float | None:
    """Parse a Cost Explorer decimal string, None if it isn't a finite number."""
    if isinstance(value, bool) or value is None:
        return None
    try:
        amount = float(value)
    except (TypeError, ValueError):
        return None
    return amount if math.isfinite(amount) else None


def _metric_amount(metrics: Any, metric: str = COST_METRIC) -> float | None:
    if not isinstance(metrics, dict):
        return None
    entry = metrics.get(metric)
    if not isinstance(entry, dict):
        return None
    return parse_amount(entry.get("Amount"))


def _period_start(result: dict[str, Any]) -> str | None:
    period = result.get("TimePeriod")
    if not isinstance(period, dict):
        return None
    start = period.get("Start")
    return start if isinstance(start, str) else None


def results_by_time(response: dict[str, Any]) -> list[dict[str, Any]]:
    """Return the ResultsByTime records, skipping entries that aren't objects."""
    results = response.get("ResultsByTime", [])
    if not isinstance(results, list):
        raise InvalidResponse("Invalid response from AWS: ResultsByTime is not a list")
    return [result for result in results if isinstance(result, dict)]


def parse_daily_costs(response: dict[str, Any]) -> list[DailyCost]:
    daily_costs = []
    for result in results_by_time(response):
        start = _period_start(result)
        amount = _metric_amount(result.get("Total"))
        try:
            day = date.fromisoformat(start) if start else None
        except ValueError:
            day = None
        if day is None or amount is None:
            logger.warning(f"🔵 AWS: Skipping unparseable daily cost record for {start}")
            continue
        daily_costs.append(DailyCost(date=day, cost=amount))

    daily_costs.sort(key=lambda entry: entry.date)
    return daily_costs


def parse_monthly_total(response: dict[str, Any]) -> float:
    amounts = [_metric_amount(result.get("Total")) for result in results_by_time(response)]
    return sum(amount for amount in amounts if amount is not None)


def parse_monthly_costs(response: dict[str, Any], current_month: str) -> list[MonthlyCost]:
    monthly_costs = []
    for result in results_by_time(response):
        start = _period_start(result)
        amount = _metric_amount(result.get("Total"))
        if not start or len(start) < 7 or amount is None:
            logger.warning(f"🔵 AWS: Skipping unparseable monthly cost record for {start}")
            continue
        month = start[:7]
        try:
            monthly_costs.append(
                MonthlyCost(month=month, cost=amount, is_complete=month != current_month)
            )
        except ValueError:
            logger.warning(f"🔵 AWS: Skipping monthly cost record with bad period {start}")

    monthly_costs.sort(key=lambda entry: entry.month)
    return monthly_costs


def parse_service_costs(response: dict[str, Any]) -> list[tuple[str, float]]:
    """Collect (service, amount) pairs from a SERVICE-grouped response."""
    totals: dict[str, float] = {}
    for result in results_by_time(response):
        groups = result.get("Groups") or []
        if not isinstance(groups, list):
            continue
        for group in groups:
            if not isinstance(group, dict):
                continue
            keys = group.get("Keys")
            amount = _metric_amount(group.get("Metrics"))
            if not isinstance(keys, list) or not keys or not isinstance(keys[0], str) or amount is None:
                continue
            totals[keys[0]] = totals.get(keys[0], 0.0) + amount
    return list(totals.items())


class CostExplorerClient:
    """Client for the AWS Cost Explorer API."""

    def __init__(
        self,
        credentials: CredentialCache,
        http_client: httpx.AsyncClient | None = None,
        endpoint: str = DEFAULT_ENDPOINT,
        timeout: float = 30.0,
        currency: str = "USD",
        today: Callable[[], date] = date.today,
        clock: Callable[[], datetime] = utc_now,
    ):
        """
        Initialize the Cost Explorer client.

        Args:
            credentials: Credential cache used to resolve account profiles
            http_client: Optional shared httpx client
            endpoint: Endpoint template with a {region} placeholder
            timeout: Request timeout in seconds
            currency: Currency code reported on snapshots
            today: Returns the local calendar date the periods are based on
            clock: Returns the signing time
        """
        self.credentials = credentials
        self.endpoint = endpoint
        self.timeout = timeout
        self.currency = currency
        self._http_client = http_client
        self._today = today
        self._clock = clock

    @property
    def http_client(self) -> httpx.AsyncClient:
        """Get or create the HTTP client."""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=self.timeout)
        return self._http_client

    async def aclose(self) -> None:
        if self._http_client is not None:
            await self._http_client.aclose()
            self._http_client = None

    async def fetch_billing(self, account: Account) -> BillingSnapshot:
        """
        Fetch a complete billing snapshot for one account.

        The five Cost Explorer calls are made one after another.

        Raises:
            NotConfigured: If the account has no region
            APIError: If Cost Explorer rejects a request
            InvalidResponse: If a response has an unexpected shape
            CredentialsNotFound, ProviderError: From credential resolution
        """
        if not account.region:
            raise NotConfigured(f"AWS account '{account.name}' has no region configured")

        credentials = await self.credentials.resolve(account.profile_name)
        period = BillingPeriod(today=self._today())
        region = account.region

        logger.info(f"🔵 AWS: Fetching billing for {account.name} ({account.account_id}) in {region}")

        mtd_data = await self.get_cost_and_usage(
            credentials, region, period.month_start, period.tomorrow, "DAILY"
        )
        last_month_data = await self.get_cost_and_usage(
            credentials, region, period.last_month_start, period.month_start, "MONTHLY"
        )
        service_data = await self.get_cost_and_usage(
            credentials, region, period.month_start, period.tomorrow, "MONTHLY", group_by="SERVICE"
        )
        history_data = await self.get_cost_and_usage(
            credentials, region, period.history_start, period.tomorrow, "MONTHLY"
        )
        forecast = await self.get_cost_forecast(credentials, region, period)

        daily_costs = parse_daily_costs(mtd_data)
        month_to_date = sum(entry.cost for entry in daily_costs)

        snapshot = BillingSnapshot(
            account_id=account.account_id,
            account_name=account.name,
            month_to_date_cost=month_to_date,
            last_month_cost=parse_monthly_total(last_month_data),
            forecasted_month_cost=forecast,
            daily_average_cost=month_to_date / period.today.day,
            cost_by_service=ServiceCost.breakdown(parse_service_costs(service_data), month_to_date),
            daily_costs=daily_costs,
            monthly_costs=parse_monthly_costs(history_data, period.current_month),
            updated_at=self._clock(),
            currency=self.currency,
        )

        logger.info(
            f"🔵 AWS: {account.name}: month-to-date {self.currency} {month_to_date:.2f}, "
            f"{len(snapshot.cost_by_service)} services"
        )
        return snapshot

    async def get_cost_and_usage(
        self,
        credentials: Credentials,
        region: str,
        start: date,
        end: date,
        granularity: str,
        group_by: str | None = None,
    ) -> dict[str, Any]:
        body: dict[str, Any] = {
            "TimePeriod": {"Start": start.isoformat(), "End": end.isoformat()},
            "Granularity": granularity,
            "Metrics": [COST_METRIC],
        }
        if group_by:
            body["GroupBy"] = [{"Type": "DIMENSION", "Key": group_by}]

        return await self._make_request(credentials, region, "GetCostAndUsage", body)

    async def get_cost_forecast(
        self, credentials: Credentials, region: str, period: BillingPeriod
    ) -> float | None:
        """
        Forecast the cost of the rest of the month.

        Returns None on the last day of the month, and when Cost Explorer
        can't produce a forecast (usually not enough history).
        """
        if period.is_last_day_of_month:
            logger.debug("🔵 AWS: Last day of month, skipping forecast")
            return None

        body = {
            "TimePeriod": {
                "Start": period.tomorrow.isoformat(),
                "End": period.next_month_start.isoformat(),
            },
            "Metric": FORECAST_METRIC,
            "Granularity": "MONTHLY",
        }

        try:
            response = await self._make_request(credentials, region, "GetCostForecast", body)
        except (APIError, InvalidResponse) as e:
            logger.warning(f"🔵 AWS: Could not get forecast: {e}")
            return None

        total = response.get("Total")
        return parse_amount(total.get("Amount")) if isinstance(total, dict) else None

    async def _make_request(
        self, credentials: Credentials, region: str, action: str, body: dict[str, Any]
    ) -> dict[str, Any]:
        url = httpx.URL(self.endpoint.format(region=region))
        payload = json.dumps(body).encode("utf-8")
        headers = {
            "Content-Type": CONTENT_TYPE,
            "Host": url.netloc.decode("ascii"),
            "X-Amz-Target": f"{TARGET_PREFIX}.{action}",
        }

        signer = RequestSigner(region=region, service=SERVICE_NAME)
        signed_headers = signer.sign(
            "POST", url.raw_path.decode("ascii") or "/", "", headers, payload, credentials, self._clock()
        )

        logger.debug(f"🔵 AWS: {action} {body.get('TimePeriod')} -> {url}")

        try:
            response = await self.http_client.post(url, content=payload, headers=signed_headers)
        except httpx.HTTPError as e:
            raise APIError(f"AWS API request failed: {e}")

        if response.status_code != 200:
            raise APIError.from_response(response.status_code, response.text)

        try:
            data = response.json()
        except ValueError:
            raise InvalidResponse("Invalid response from AWS: body is not JSON")

        if not isinstance(data, dict):
            raise InvalidResponse("Invalid response from AWS: expected a JSON object")
        return data
