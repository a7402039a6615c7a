from __future__ import annotations

import asyncio
import html
import threading
from collections import defaultdict
from collections.abc import Callable, Iterable
from datetime import date, datetime, timedelta, timezone
from typing import Any, Protocol

import boto3
from botocore.exceptions import (
    BotoCoreError,
    ClientError,
    ConnectTimeoutError,
    EndpointConnectionError,
    ReadTimeoutError,
)

from blog_server.logging import get_logger
from blog_server.telemetry import catalog
from blog_server.telemetry.errors import CostFetchError, TransientCostFetchError
from blog_server.telemetry.pipeline import MetricIngestionPipeline
from blog_server.telemetry.points import SumPoint

COST_WINDOWS = (("7d", 7), ("30d", 30), ("90d", 90))

_THROTTLING_CODES = frozenset({"ThrottlingException", "LimitExceededException", "RequestLimitExceeded"})

_TABLE_HEAD = "<thead><tr><th>Service</th><th>7d</th><th>30d</th><th>90d</th></tr></thead>"


def _table_foot(last_update: str) -> str:
    return (
        '<tfoot><tr><td colspan="4" class="cost-updated">Last updated: '
        f"{html.escape(last_update)}</td></tr></tfoot>"
    )


def _message_body(message: str, color: str = "") -> str:
    style = "text-align: center; padding: 20px;"
    if color:
        style += f" color: {color};"
    return f'<tbody><tr><td colspan="4" style="{style}">{message}</td></tr></tbody>'


DISABLED_FRAGMENT = (
    _TABLE_HEAD + _message_body("Cost tracking disabled", "#76ff03") + _table_foot("N/A")
)

PENDING_FRAGMENT = (
    _TABLE_HEAD + _message_body("Cost data not yet available") + _table_foot("N/A")
)


def render_failure_fragment(last_update: str) -> str:
    return (
        _TABLE_HEAD
        + _message_body("Failed to fetch cost data. Check logs for details.", "#ff0000")
        + _table_foot(last_update)
    )


def render_cost_table(costs: dict[str, dict[str, str]], last_update: str) -> str:
    """Render service -> window -> cost as table sections, services sorted by name."""
    parts = [_TABLE_HEAD]
    if not costs:
        parts.append(_message_body("No cost data available"))
    else:
        parts.append("<tbody>")
        for service in sorted(costs):
            windows = costs[service]
            parts.append("<tr>")
            parts.append(f"<td>{html.escape(service)}</td>")
            for label, _ in COST_WINDOWS:
                parts.append(f"<td>{html.escape(windows.get(label, 'n/a'))}</td>")
            parts.append("</tr>")
        parts.append("</tbody>")
    parts.append(_table_foot(last_update))
    return "".join(parts)


def format_timestamp(moment: datetime) -> str:
    return moment.astimezone(timezone.utc).strftime("%Y-%m-%d %H:%M:%S UTC")


class CostSource(Protocol):
    async def fetch(self, days: int) -> list[tuple[str, float]]:
        """Return (service, amount) pairs for the last ``days`` days.

        Raises CostFetchError on failure; an empty list means no spend.
        """
        ...


class CostExplorerSource:
    """AWS Cost Explorer backed cost source."""

    def __init__(
        self,
        region: str = "us-east-1",
        client: Any = None,
        today: Callable[[], date] | None = None,
        logger: Any = None,
    ) -> None:
        self._region = region
        self._client = client
        self._today = today or (lambda: datetime.now(timezone.utc).date())
        self._log = logger or get_logger("telemetry")

    async def fetch(self, days: int) -> list[tuple[str, float]]:
        return await asyncio.to_thread(self._fetch_sync, days)

    def _fetch_sync(self, days: int) -> list[tuple[str, float]]:
        end = self._today()
        start = end - timedelta(days=days)
        request: dict[str, Any] = {
            "TimePeriod": {"Start": start.isoformat(), "End": end.isoformat()},
            "Granularity": "MONTHLY",
            "Metrics": ["UnblendedCost"],
            "GroupBy": [{"Type": "DIMENSION", "Key": "SERVICE"}],
        }
        amounts: list[tuple[str, float]] = []
        while True:
            response = self._call(request, days)
            for by_time in response.get("ResultsByTime", []):
                for group in by_time.get("Groups", []):
                    keys = group.get("Keys") or []
                    amount = group.get("Metrics", {}).get("UnblendedCost", {}).get("Amount")
                    if not keys or amount is None:
                        continue
                    amounts.append((keys[0], self._parse_amount(amount)))
            token = response.get("NextPageToken")
            if not token:
                return amounts
            request["NextPageToken"] = token

    def _call(self, request: dict[str, Any], days: int) -> dict[str, Any]:
        try:
            if self._client is None:
                self._client = boto3.client("ce", region_name=self._region)
            return self._client.get_cost_and_usage(**request)
        except (EndpointConnectionError, ConnectTimeoutError, ReadTimeoutError) as exc:
            raise TransientCostFetchError(f"cost request for {days}d failed: {exc}") from exc
        except ClientError as exc:
            code = exc.response.get("Error", {}).get("Code", "")
            if code in _THROTTLING_CODES:
                raise TransientCostFetchError(f"cost request for {days}d throttled: {code}") from exc
            raise CostFetchError(f"cost request for {days}d failed: {exc}") from exc
        except BotoCoreError as exc:
            raise CostFetchError(f"cost request for {days}d failed: {exc}") from exc

    def _parse_amount(self, raw: str) -> float:
        try:
            return float(raw)
        except ValueError:
            self._log.warning("cost_amount_unparsable", amount=raw)
            return 0.0


async def aggregate_costs(
    fetch: Callable[[int], Any],
    allowed_services: Iterable[str],
) -> dict[str, dict[str, str]]:
    """Sum allowed services' amounts per look-back window and format as dollars."""
    allowed = set(allowed_services)
    costs: dict[str, dict[str, str]] = defaultdict(dict)
    for label, days in COST_WINDOWS:
        totals: dict[str, float] = defaultdict(float)
        for service, amount in await fetch(days):
            if service in allowed:
                totals[service] += amount
        for service, total in totals.items():
            costs[service][label] = f"${total:.2f}"
    return dict(costs)


class CostReport:
    """Cached cost table fragment."""

    def __init__(self) -> None:
        self._fragment = PENDING_FRAGMENT
        self._lock = threading.Lock()

    def fragment(self) -> str:
        with self._lock:
            return self._fragment

    def replace(self, fragment: str) -> None:
        with self._lock:
            self._fragment = fragment


class CostRefresher:
    """Keeps the cost report fresh.

    When disabled it renders a static fragment once and never touches the
    source. When enabled it fetches immediately and then once per interval. A
    failed refresh keeps whatever fragment is cached and counts a failure.
    """

    def __init__(
        self,
        report: CostReport,
        pipeline: MetricIngestionPipeline,
        source: CostSource | None,
        *,
        enabled: bool,
        allowed_services: Iterable[str],
        interval_seconds: float = 6 * 3600,
        fetch: Callable[[Any, int], Any] | None = None,
        clock: Callable[[], datetime] | None = None,
        logger: Any = None,
    ) -> None:
        self._report = report
        self._pipeline = pipeline
        self._source = source
        self._enabled = enabled
        self._allowed = tuple(allowed_services)
        self._interval = interval_seconds
        self._fetch = fetch
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._log = logger or get_logger("telemetry")
        self._successes = 0
        self._failures = 0

    @property
    def successes(self) -> int:
        return self._successes

    @property
    def failures(self) -> int:
        return self._failures

    async def run(self, stop: asyncio.Event) -> None:
        if not self._enabled or self._source is None:
            self._report.replace(DISABLED_FRAGMENT)
            self._log.info("cost_tracking_disabled")
            return

        await self.refresh(initial=True)
        while True:
            try:
                await asyncio.wait_for(stop.wait(), timeout=self._interval)
                return
            except TimeoutError:
                pass
            await self.refresh()

    async def refresh(self, initial: bool = False) -> bool:
        source = self._source
        if self._fetch is not None:
            fetch = self._fetch

            async def fetch_window(days: int) -> list[tuple[str, float]]:
                return await fetch(source, days)
        else:
            fetch_window = source.fetch

        try:
            costs = await aggregate_costs(fetch_window, self._allowed)
        except (CostFetchError, ConnectionError, TimeoutError) as exc:
            self._log.error("cost_fetch_failed", error=str(exc), initial=initial)
            self._record_failure(initial)
            return False
        except Exception:
            self._log.exception("cost_refresh_crashed", initial=initial)
            self._record_failure(initial)
            return False

        self._report.replace(render_cost_table(costs, format_timestamp(self._clock())))
        self._successes += 1
        self._publish()
        self._log.debug("cost_data_updated", services=len(costs))
        return True

    def _record_failure(self, initial: bool) -> None:
        self._failures += 1
        if initial:
            self._report.replace(render_failure_fragment(format_timestamp(self._clock())))
        self._publish()

    def _publish(self) -> None:
        self._pipeline.export(
            [
                SumPoint(name=catalog.COST_UPDATE_SUCCESS, value=self._successes),
                SumPoint(name=catalog.COST_UPDATE_FAILURE, value=self._failures),
            ]
        )
