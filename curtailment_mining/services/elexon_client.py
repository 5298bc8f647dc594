"""Elexon settlement stack API client."""

import asyncio
from datetime import date, datetime, time, timedelta, timezone
from typing import Awaitable, Callable, Iterable, List, Optional
from zoneinfo import ZoneInfo

import httpx
import structlog
from pydantic import ValidationError

from curtailment_mining.core.config import get_settings
from curtailment_mining.core.constants import SETTLEMENT_PERIOD_MINUTES
from curtailment_mining.core.exceptions import (
    UpstreamError,
    UpstreamMalformedResponse,
    UpstreamRateLimited,
    UpstreamUnavailable,
)
from curtailment_mining.core.retry import retry_with_backoff
from curtailment_mining.schemas.elexon import SettlementStackRecord, SettlementStackResponse
from curtailment_mining.services.bmu_mapping import BmuMapping

logger = structlog.get_logger()

STACK_SIDES = ("bid", "offer")

UK_TIMEZONE = ZoneInfo("Europe/London")

# Longest payload excerpt attached to a malformed-response error
FRAGMENT_LIMIT = 500


def filter_curtailment_records(
    records: Iterable[SettlementStackRecord], bmu_mapping: BmuMapping
) -> List[SettlementStackRecord]:
    """Keep system-flagged curtailment (negative volume) for tracked wind farm BM Units."""
    return [
        record
        for record in records
        if record.volume < 0 and record.so_flag and record.id in bmu_mapping
    ]


def _retry_after_seconds(response: httpx.Response) -> Optional[float]:
    value = response.headers.get("Retry-After")
    if value is None:
        return None
    try:
        return max(float(value), 0.0)
    except ValueError:
        return None


class ElexonClient:
    """Client for the Elexon Insights settlement stack endpoints."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        api_key: Optional[str] = None,
        timeout: Optional[float] = None,
        max_retries: Optional[int] = None,
        retry_base_delay: Optional[float] = None,
        retry_max_delay: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        settings = get_settings()
        self.base_url = (base_url or settings.ELEXON_BASE_URL).rstrip("/")
        self.api_key = api_key or settings.ELEXON_API_KEY
        self.timeout = timeout if timeout is not None else settings.ELEXON_TIMEOUT_SECONDS
        self.max_retries = max_retries if max_retries is not None else settings.ELEXON_MAX_RETRIES
        self.retry_base_delay = (
            retry_base_delay if retry_base_delay is not None else settings.ELEXON_RETRY_BASE_DELAY
        )
        self.retry_max_delay = (
            retry_max_delay if retry_max_delay is not None else settings.ELEXON_RETRY_MAX_DELAY
        )
        self.headers = {"Accept": "application/json"}
        if self.api_key:
            self.headers["x-api-key"] = self.api_key
        self._transport = transport
        self._sleep = sleep
        self._http: Optional[httpx.AsyncClient] = None

    def _build_http_client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url,
            headers=self.headers,
            timeout=httpx.Timeout(self.timeout),
            transport=self._transport,
        )

    async def __aenter__(self) -> "ElexonClient":
        self._http = self._build_http_client()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        if self._http is not None:
            await self._http.aclose()
            self._http = None

    async def _get(self, path: str) -> httpx.Response:
        if self._http is not None:
            return await self._http.get(path)
        async with self._build_http_client() as client:
            return await client.get(path)

    async def _fetch_stack_once(
        self, side: str, settlement_date: date, settlement_period: int
    ) -> List[SettlementStackRecord]:
        date_str = settlement_date.isoformat()
        path = f"/balancing/settlement/stack/all/{side}/{date_str}/{settlement_period}"
        context = {"settlement_date": date_str, "settlement_period": settlement_period}

        try:
            response = await self._get(path)
        except httpx.TimeoutException as e:
            raise UpstreamUnavailable(f"Timed out fetching {side} stack: {e}", **context) from e
        except httpx.TransportError as e:
            raise UpstreamUnavailable(f"Transport error fetching {side} stack: {e}", **context) from e

        if response.status_code == 429:
            raise UpstreamRateLimited(
                f"Elexon rate limit hit for {side} stack",
                retry_after=_retry_after_seconds(response),
                **context,
            )
        if response.status_code >= 500:
            raise UpstreamUnavailable(
                f"Elexon API error: {response.status_code} - {response.text[:200]}", **context
            )
        if response.status_code != 200:
            raise UpstreamError(
                f"Elexon API error: {response.status_code} - {response.text[:200]}", **context
            )

        try:
            payload = response.json()
        except ValueError as e:
            raise UpstreamMalformedResponse(
                f"{side} stack response is not JSON",
                fragment=response.text[:FRAGMENT_LIMIT],
                **context,
            ) from e

        try:
            parsed = SettlementStackResponse.model_validate(payload)
        except ValidationError as e:
            fragment = repr(payload)[:FRAGMENT_LIMIT]
            logger.error(
                "Malformed settlement stack response",
                side=side,
                fragment=fragment,
                errors=e.errors(include_url=False),
                **context,
            )
            raise UpstreamMalformedResponse(
                f"{side} stack response failed validation: {e.error_count()} error(s)",
                fragment=fragment,
                **context,
            ) from e

        return parsed.data

    async def fetch_stack(
        self, side: str, settlement_date: date, settlement_period: int
    ) -> List[SettlementStackRecord]:
        """
        Fetch one side of the settlement stack, retrying transient failures.

        Args:
            side: ``bid`` or ``offer``
            settlement_date: Settlement date
            settlement_period: Settlement period (1-50)

        Returns:
            Parsed stack records, unfiltered
        """
        if side not in STACK_SIDES:
            raise ValueError(f"side must be one of {STACK_SIDES}, got {side!r}")

        return await retry_with_backoff(
            lambda: self._fetch_stack_once(side, settlement_date, settlement_period),
            max_attempts=self.max_retries,
            base_delay=self.retry_base_delay,
            max_delay=self.retry_max_delay,
            description=f"{side} stack {settlement_date.isoformat()} period {settlement_period}",
            sleep=self._sleep,
        )

    async def fetch_bids_offers(
        self, settlement_date: date, settlement_period: int
    ) -> List[SettlementStackRecord]:
        """
        Fetch bid and offer stacks for one period.

        Records are returned unfiltered; see ``filter_curtailment_records``. A
        farm can appear in both stacks, so callers merge before storage.
        """
        records: List[SettlementStackRecord] = []
        for side in STACK_SIDES:
            records.extend(await self.fetch_stack(side, settlement_date, settlement_period))

        logger.debug(
            "Fetched settlement stack",
            settlement_date=settlement_date.isoformat(),
            settlement_period=settlement_period,
            records=len(records),
        )
        return records


def settlement_periods_for_date(settlement_date: date) -> int:
    """
    Number of settlement periods in a UK settlement day.

    48 normally, 46 on the spring clock change and 50 on the autumn one.
    """
    start = datetime.combine(settlement_date, time.min, tzinfo=UK_TIMEZONE)
    end = datetime.combine(settlement_date + timedelta(days=1), time.min, tzinfo=UK_TIMEZONE)
    elapsed = end.astimezone(timezone.utc) - start.astimezone(timezone.utc)
    return int(elapsed.total_seconds() // (SETTLEMENT_PERIOD_MINUTES * 60))
