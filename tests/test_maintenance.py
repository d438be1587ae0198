from datetime import date, datetime, timezone

import pytest

from pgstream.maintenance import (
    PartitionInfo,
    PartitionNameError,
    RetentionPolicy,
    run_maintenance,
)
from pgstream.metrics import (
    MAINTENANCE_DURATION_MILLISECONDS,
    MAINTENANCE_RUNS_TOTAL,
    MetricsRegistry,
)

NOW = datetime(2024, 3, 15, 12, 0, 0, tzinfo=timezone.utc)


def test_partition_info_from_name_valid():
    result = PartitionInfo.from_name("events_20240315")
    assert result.name == "events_20240315"
    assert result.date == date(2024, 3, 15)


def test_partition_info_from_name_invalid():
    with pytest.raises(PartitionNameError):
        PartitionInfo.from_name("events_invalid")


def test_partition_info_from_name_missing_suffix():
    with pytest.raises(PartitionNameError):
        PartitionInfo.from_name("events")


def test_partition_info_from_name_impossible_date():
    with pytest.raises(PartitionNameError):
        PartitionInfo.from_name("events_20240231")


def test_partition_info_for_date():
    day = date(2024, 3, 15)
    partition = PartitionInfo.for_date("events", day)
    assert partition.name == "events_20240315"
    assert partition.date == day


def test_partition_name_round_trip():
    partition = PartitionInfo.for_date("events", date(2023, 12, 31))
    assert PartitionInfo.from_name(partition.name) == partition


def test_partition_info_range_bounds():
    partition = PartitionInfo.for_date("events", date(2024, 3, 15))
    assert partition.range_bounds() == ("2024-03-15", "2024-03-16")


def test_retention_policy_plan_maintenance_drop_old():
    policy = RetentionPolicy(7)
    partitions = [
        PartitionInfo.for_date("events", date(2024, 3, 1)),
        PartitionInfo.for_date("events", date(2024, 3, 15)),
        PartitionInfo.for_date("events", date(2024, 3, 16)),
    ]
    to_drop, _ = policy.plan_maintenance(partitions, "events", 3, NOW)
    assert len(to_drop) == 1
    assert to_drop[0].date == date(2024, 3, 1)


def test_retention_policy_plan_maintenance_create_future():
    policy = RetentionPolicy(7)
    partitions = [PartitionInfo.for_date("events", date(2024, 3, 15))]
    to_drop, to_create = policy.plan_maintenance(partitions, "events", 3, NOW)
    assert len(to_drop) == 0
    assert len(to_create) == 2
    assert to_create[0].date == date(2024, 3, 16)
    assert to_create[1].date == date(2024, 3, 17)


def test_retention_policy_plan_maintenance_no_changes_needed():
    policy = RetentionPolicy(7)
    partitions = [
        PartitionInfo.for_date("events", date(2024, 3, 15)),
        PartitionInfo.for_date("events", date(2024, 3, 16)),
        PartitionInfo.for_date("events", date(2024, 3, 17)),
    ]
    to_drop, to_create = policy.plan_maintenance(partitions, "events", 3, NOW)
    assert len(to_drop) == 0
    assert len(to_create) == 0


def test_retention_policy_plan_maintenance_at_retention_boundary():
    policy = RetentionPolicy(7)
    partitions = [
        PartitionInfo.for_date("events", date(2024, 3, 8)),
        PartitionInfo.for_date("events", date(2024, 3, 7)),
    ]
    to_drop, _ = policy.plan_maintenance(partitions, "events", 1, NOW)
    assert len(to_drop) == 1
    assert to_drop[0].date == date(2024, 3, 7)


def test_retention_policy_combined_drop_and_create():
    policy = RetentionPolicy(7)
    partitions = [
        PartitionInfo.for_date("events", date(2024, 3, 1)),
        PartitionInfo.for_date("events", date(2024, 3, 15)),
    ]
    to_drop, to_create = policy.plan_maintenance(partitions, "events", 3, NOW)
    assert len(to_drop) == 1
    assert len(to_create) == 2


class FakeStore:
    def __init__(self, stream_id, partitions, fail_on_create=False):
        self.stream_id = stream_id
        self.partitions = list(partitions)
        self.fail_on_create = fail_on_create
        self.loaded = []
        self.deleted = []
        self.created = []

    async def load_partitions(self, schema, table):
        self.loaded.append((schema, table))
        return list(self.partitions)

    async def delete_partition(self, schema, name):
        self.deleted.append((schema, name))

    async def create_partition(self, schema, table, partition):
        if self.fail_on_create:
            raise RuntimeError("create failed")
        self.created.append((schema, table, partition.name))


@pytest.mark.asyncio
async def test_run_maintenance_drops_and_creates():
    store = FakeStore(
        4,
        [
            PartitionInfo.for_date("events", date(2024, 3, 1)),
            PartitionInfo.for_date("events", date(2024, 3, 15)),
        ],
    )
    registry = MetricsRegistry()
    started = await run_maintenance(store, NOW, registry)

    assert started == NOW
    assert store.loaded == [("pgstream", "events")]
    assert store.deleted == [("pgstream", "events_20240301")]
    assert store.created == [
        ("pgstream", "events", "events_20240316"),
        ("pgstream", "events", "events_20240317"),
    ]
    assert registry.value(MAINTENANCE_RUNS_TOTAL, {"stream_id": "4", "result": "success"}) == 1
    assert len(registry.value(MAINTENANCE_DURATION_MILLISECONDS, {"stream_id": "4"})) == 1


@pytest.mark.asyncio
async def test_run_maintenance_failure_is_recorded_and_raised():
    store = FakeStore(4, [], fail_on_create=True)
    registry = MetricsRegistry()
    with pytest.raises(RuntimeError, match="create failed"):
        await run_maintenance(store, NOW, registry)

    assert registry.value(MAINTENANCE_RUNS_TOTAL, {"stream_id": "4", "result": "failure"}) == 1
    with pytest.raises(KeyError):
        registry.value(MAINTENANCE_DURATION_MILLISECONDS, {"stream_id": "4"})


@pytest.mark.asyncio
async def test_run_maintenance_defaults_to_current_time():
    store = FakeStore(1, [])
    registry = MetricsRegistry()
    before = datetime.now(timezone.utc)
    started = await run_maintenance(store, registry=registry)
    after = datetime.now(timezone.utc)
    assert before <= started <= after
    assert len(store.created) == 3