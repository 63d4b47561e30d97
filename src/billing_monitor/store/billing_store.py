"""
Billing store and refresh orchestration.

BillingStore owns the account list and the per-account billing state
(snapshots and error messages). A refresh fetches every enabled account
concurrently and merges the results once all fetches have finished; a
failing account keeps its previous snapshot and gets an error message
instead. Only one refresh runs at a time.
"""

import asyncio
import inspect
import logging
from collections.abc import Callable, Iterable
from datetime import datetime
from enum import Enum
from typing import Any, Optional

from ..config.settings import BillingConfig
from ..models.account import Account
from ..models.billing import AggregatedBilling, BillingSnapshot
from ..providers.aws import CostExplorerClient
from ..providers.base import BillingError
from ..utils.auth import create_credential_provider
from ..utils.cache import CredentialCache, utc_now
from .accounts import AccountRepository

logger = logging.getLogger(__name__)

DEFAULT_MAX_CONCURRENT_ACCOUNTS = 8


class RefreshFrequency(Enum):
    """How often the periodic driver refreshes billing data."""

    MANUAL = "manual"
    ONE_MINUTE = "1min"
    TWO_MINUTES = "2min"
    FIVE_MINUTES = "5min"
    FIFTEEN_MINUTES = "15min"
    ONE_HOUR = "1hour"

    @property
    def display_name(self) -> str:
        return _FREQUENCY_DISPLAY_NAMES[self]

    @property
    def seconds(self) -> Optional[int]:
        """Interval in seconds, None for manual refresh."""
        return _FREQUENCY_SECONDS[self]


_FREQUENCY_DISPLAY_NAMES = {
    RefreshFrequency.MANUAL: "Manual",
    RefreshFrequency.ONE_MINUTE: "1 minute",
    RefreshFrequency.TWO_MINUTES: "2 minutes",
    RefreshFrequency.FIVE_MINUTES: "5 minutes",
    RefreshFrequency.FIFTEEN_MINUTES: "15 minutes",
    RefreshFrequency.ONE_HOUR: "1 hour",
}

_FREQUENCY_SECONDS = {
    RefreshFrequency.MANUAL: None,
    RefreshFrequency.ONE_MINUTE: 60,
    RefreshFrequency.TWO_MINUTES: 120,
    RefreshFrequency.FIVE_MINUTES: 300,
    RefreshFrequency.FIFTEEN_MINUTES: 900,
    RefreshFrequency.ONE_HOUR: 3600,
}

FetchResult = tuple[str, Optional[BillingSnapshot], Optional[str]]


class BillingStore:
    """Shared billing state for all configured accounts."""

    def __init__(
        self,
        client: CostExplorerClient,
        accounts: Optional[Iterable[Account]] = None,
        repository: Optional[AccountRepository] = None,
        refresh_frequency: RefreshFrequency = RefreshFrequency.FIVE_MINUTES,
        max_concurrent_accounts: int = DEFAULT_MAX_CONCURRENT_ACCOUNTS,
        on_refresh: Optional[Callable[["BillingStore"], Any]] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        """
        Initialize the billing store.

        Args:
            client: Cost Explorer client used for every account fetch
            accounts: Initial accounts; loaded from the repository when omitted
            repository: Optional persistence for account changes
            refresh_frequency: Interval of the periodic driver
            max_concurrent_accounts: Upper bound on concurrent account fetches
            on_refresh: Called with the store after every completed refresh
            clock: Returns the current time (timezone-aware)
        """
        if max_concurrent_accounts < 1:
            raise ValueError("max_concurrent_accounts must be at least 1")

        self.client = client
        self.repository = repository
        self.refresh_frequency = refresh_frequency
        self.on_refresh = on_refresh
        self._clock = clock

        if accounts is not None:
            self._accounts = list(accounts)
        elif repository is not None:
            self._accounts = repository.load()
        else:
            self._accounts = []

        self._snapshots: dict[str, BillingSnapshot] = {}
        self._errors: dict[str, str] = {}
        self._is_refreshing = False
        self._last_refresh: Optional[datetime] = None

        self._state_lock = asyncio.Lock()
        self._fetch_slots = asyncio.Semaphore(max_concurrent_accounts)

        self._timer_enabled = False
        self._timer_task: Optional[asyncio.Task] = None
        self._refresh_tasks: set[asyncio.Task] = set()

    @classmethod
    def from_config(
        cls, config: BillingConfig, on_refresh: Optional[Callable[["BillingStore"], Any]] = None
    ) -> "BillingStore":
        """Wire up credential provider, cache, client and repository from settings."""
        if config.credential_provider == "cli":
            provider = create_credential_provider("cli", cli_path=config.cli_path)
        else:
            provider = create_credential_provider(config.credential_provider)

        credentials = CredentialCache(
            provider, session_ttl=config.session_ttl, permanent_ttl=config.permanent_ttl
        )
        client = CostExplorerClient(
            credentials,
            endpoint=config.endpoint,
            timeout=config.timeout,
            currency=config.currency,
        )

        return cls(
            client,
            repository=AccountRepository(config.accounts_file),
            refresh_frequency=RefreshFrequency(config.refresh_frequency),
            max_concurrent_accounts=config.max_concurrent_accounts,
            on_refresh=on_refresh,
        )

    # State

    @property
    def accounts(self) -> list[Account]:
        return list(self._accounts)

    @property
    def enabled_accounts(self) -> list[Account]:
        return [account for account in self._accounts if account.is_enabled]

    @property
    def snapshots(self) -> dict[str, BillingSnapshot]:
        """Current snapshots keyed by account id."""
        return dict(self._snapshots)

    @property
    def errors(self) -> dict[str, str]:
        """Error messages from the last refresh, keyed by account id."""
        return dict(self._errors)

    @property
    def is_refreshing(self) -> bool:
        return self._is_refreshing

    @property
    def last_refresh(self) -> Optional[datetime]:
        """Completion time of the last refresh."""
        return self._last_refresh

    @property
    def aggregated(self) -> AggregatedBilling:
        return AggregatedBilling.from_snapshots(self._snapshots.values())

    def snapshot(self, account_id: str) -> Optional[BillingSnapshot]:
        return self._snapshots.get(account_id)

    def error(self, account_id: str) -> Optional[str]:
        return self._errors.get(account_id)

    def account(self, account_id: str) -> Optional[Account]:
        return next((account for account in self._accounts if account.id == account_id), None)

    # Refresh

    async def refresh(self) -> bool:
        """
        Refresh billing data for all enabled accounts.

        Returns:
            False if a refresh was already running and this call did nothing
        """
        if self._is_refreshing:
            logger.debug("Refresh already in progress, skipping")
            return False

        self._is_refreshing = True
        try:
            accounts = self.enabled_accounts
            logger.info(f"Refreshing billing data for {len(accounts)} accounts")

            results = await asyncio.gather(*(self._fetch_account(account) for account in accounts))
            await self._merge_results(results)

            failed = sum(1 for _, snapshot, _ in results if snapshot is None)
            logger.info(f"Refresh complete: {len(results) - failed} succeeded, {failed} failed")
        finally:
            self._is_refreshing = False

        if self.on_refresh is not None:
            try:
                result = self.on_refresh(self)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception("Refresh callback failed")
        return True

    async def _fetch_account(self, account: Account) -> FetchResult:
        """Fetch one account, capturing any failure as an error message."""
        async with self._fetch_slots:
            try:
                snapshot = await self.client.fetch_billing(account)
            except BillingError as e:
                logger.error(f"Failed to fetch billing for {account.name} ({account.id}): {e}")
                return account.id, None, str(e)
            except Exception as e:
                logger.error(f"Unexpected error fetching billing for {account.name} ({account.id}): {e}")
                return account.id, None, str(e) or type(e).__name__
        return account.id, snapshot, None

    async def _merge_results(self, results: list[FetchResult]) -> None:
        async with self._state_lock:
            known = {account.id for account in self._accounts}
            for account_id, snapshot, error in results:
                if account_id not in known:
                    # Removed while the refresh was running
                    continue
                if snapshot is not None:
                    self._snapshots[account_id] = snapshot
                    self._errors.pop(account_id, None)
                else:
                    # Keep the previous snapshot
                    self._errors[account_id] = error or "Unknown error"
            self._last_refresh = self._clock()

    # Periodic driver

    def start_timer(self, interval: Optional[float] = None) -> None:
        """
        Start (or restart) the periodic refresh driver.

        Must be called from within a running event loop.

        Args:
            interval: Seconds between refreshes, defaults to the refresh frequency
        """
        self._timer_enabled = True
        self._cancel_timer()

        if interval is None:
            interval = self.refresh_frequency.seconds
        if interval is None:
            logger.info("Refresh frequency is manual, periodic refresh disabled")
            return

        logger.info(f"Starting periodic refresh every {interval}s")
        self._timer_task = asyncio.get_running_loop().create_task(self._run_timer(interval))

    def stop_timer(self) -> None:
        """Stop the periodic driver. A refresh already in progress keeps running."""
        self._timer_enabled = False
        self._cancel_timer()

    @property
    def timer_running(self) -> bool:
        return self._timer_task is not None and not self._timer_task.done()

    def set_refresh_frequency(self, frequency: RefreshFrequency) -> None:
        """Change the refresh frequency, restarting the driver if it is enabled."""
        self.refresh_frequency = frequency
        logger.info(f"Refresh frequency set to {frequency.display_name}")
        if self._timer_enabled:
            self.start_timer()

    def _cancel_timer(self) -> None:
        if self._timer_task is not None:
            self._timer_task.cancel()
            self._timer_task = None

    async def _run_timer(self, interval: float) -> None:
        while True:
            await asyncio.sleep(interval)

            # Shielded so cancelling the driver leaves the refresh running
            task = asyncio.ensure_future(self.refresh())
            self._refresh_tasks.add(task)
            task.add_done_callback(self._refresh_tasks.discard)
            try:
                await asyncio.shield(task)
            except BillingError as e:
                logger.error(f"Periodic refresh failed: {e}")

    # Accounts

    def add_account(self, account: Account) -> None:
        self._accounts.append(account)
        logger.info(f"Added account {account.name} ({account.account_id})")
        self._save_accounts()

    def remove_account(self, account_id: str) -> Optional[Account]:
        """Remove an account along with its snapshot and error."""
        account = self.account(account_id)
        if account is None:
            return None

        self._accounts = [existing for existing in self._accounts if existing.id != account_id]
        self._snapshots.pop(account_id, None)
        self._errors.pop(account_id, None)
        logger.info(f"Removed account {account.name} ({account.account_id})")
        self._save_accounts()
        return account

    def update_account(self, account: Account) -> bool:
        """Replace the account with the same id. Returns False if there is none."""
        for index, existing in enumerate(self._accounts):
            if existing.id == account.id:
                self._accounts[index] = account
                self._save_accounts()
                return True
        return False

    def _save_accounts(self) -> None:
        if self.repository is None:
            return
        try:
            self.repository.save(self._accounts)
        except OSError as e:
            logger.error(f"Failed to save accounts: {e}")

    # Credentials

    def clear_credentials(self) -> None:
        """Drop all cached credentials so the next fetch reloads them."""
        self.client.credentials.invalidate_all()
        logger.info("Cleared cached credentials")

    async def available_profiles(self) -> list[str]:
        return await self.client.credentials.provider.list_profiles()

    async def aclose(self) -> None:
        """Stop the driver, wait for in-flight refreshes and close the HTTP client."""
        self.stop_timer()
        if self._refresh_tasks:
            await asyncio.gather(*self._refresh_tasks, return_exceptions=True)
        await self.client.aclose()
