"""Daily partition planning and the background maintenance run."""

from __future__ import annotations

import logging
import re
import time
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from typing import Iterable, Protocol

from pgstream import metrics
from pgstream.config import EVENTS_TABLE, SCHEMA_NAME

logger = logging.getLogger(__name__)

_DATE_SUFFIX = re.compile(r"\d{8}")

RETENTION_DAYS = 7
DAYS_AHEAD = 3


class PartitionNameError(ValueError):
    """A partition name does not end in a `_YYYYMMDD` date."""


@dataclass(frozen=True)
class PartitionInfo:
    """A daily partition and the date it covers."""

    name: str
    date: date

    @classmethod
    def from_name(cls, name: str) -> PartitionInfo:
        """Parse the date from a name such as `events_20240315`."""
        suffix = name.rsplit("_", 1)[-1]
        if not _DATE_SUFFIX.fullmatch(suffix):
            raise PartitionNameError(f"Failed to parse date: `{suffix}` in `{name}`")
        try:
            parsed = datetime.strptime(suffix, "%Y%m%d").date()
        except ValueError as err:
            raise PartitionNameError(f"Failed to parse date: {err}") from err
        return cls(name=name, date=parsed)

    @classmethod
    def for_date(cls, base_table: str, date: date) -> PartitionInfo:
        return cls(name=f"{base_table}_{date:%Y%m%d}", date=date)

    def range_bounds(self) -> tuple[str, str]:
        """Inclusive start and exclusive end of the partition, as `YYYY-MM-DD`."""
        return self.date.isoformat(), (self.date + timedelta(days=1)).isoformat()


def _utc(moment: datetime) -> datetime:
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc)


@dataclass(frozen=True)
class RetentionPolicy:
    """How many days of partitions to keep."""

    retention_days: int

    def plan_maintenance(
        self,
        partitions: Iterable[PartitionInfo],
        table_name: str,
        days_ahead: int,
        now: datetime,
    ) -> tuple[list[PartitionInfo], list[PartitionInfo]]:
        """Return the partitions to drop and the partitions to create."""
        now = _utc(now)
        cutoff = (now - timedelta(days=self.retention_days)).date()
        today = now.date()

        to_drop: list[PartitionInfo] = []
        existing: set[date] = set()
        for partition in partitions:
            if partition.date < cutoff:
                to_drop.append(partition)
            else:
                existing.add(partition.date)

        upcoming = (today + timedelta(days=offset) for offset in range(days_ahead))
        to_create = [
            PartitionInfo.for_date(table_name, target)
            for target in upcoming
            if target not in existing
        ]
        return to_drop, to_create


class PartitionStore(Protocol):
    """What a maintenance run needs from the state store."""

    stream_id: int

    async def load_partitions(self, schema: str, table: str) -> list[PartitionInfo]: ...

    async def delete_partition(self, schema: str, name: str) -> None: ...

    async def create_partition(
        self, schema: str, table: str, partition: PartitionInfo
    ) -> None: ...


async def run_maintenance(
    store: PartitionStore,
    now: datetime | None = None,
    registry: metrics.MetricsRegistry | None = None,
) -> datetime:
    """Drop partitions past retention and create the coming days' partitions.

    Returns the time the run started. The run is recorded in the metrics
    registry whether it succeeds or fails.
    """
    start = _utc(now) if now is not None else datetime.now(timezone.utc)
    started = time.monotonic()
    stream_id = store.stream_id

    try:
        existing = await store.load_partitions(SCHEMA_NAME, EVENTS_TABLE)
        policy = RetentionPolicy(RETENTION_DAYS)
        to_drop, to_create = policy.plan_maintenance(existing, EVENTS_TABLE, DAYS_AHEAD, start)

        for partition in to_drop:
            logger.info("Dropping partition: %s", partition.name)
            await store.delete_partition(SCHEMA_NAME, partition.name)

        for partition in to_create:
            logger.info("Creating partition: %s", partition.name)
            await store.create_partition(SCHEMA_NAME, EVENTS_TABLE, partition)
    except BaseException:
        elapsed_ms = float(int((time.monotonic() - started) * 1000))
        metrics.record_maintenance_run(stream_id, elapsed_ms, False, registry)
        raise

    elapsed_ms = float(int((time.monotonic() - started) * 1000))
    metrics.record_maintenance_run(stream_id, elapsed_ms, True, registry)
    return start