"""レコードストア（ファイル・メモリ）のユニットテスト。"""

from datetime import timedelta
from pathlib import Path

import pytest
from helpers import FakeClock

from specwizard.models.errors import StorageError
from specwizard.storage.base import Record, RecordStore
from specwizard.storage.memory import MemoryRecordStore
from specwizard.storage.service import FileRecordStore


@pytest.fixture(params=["file", "memory"])
def record_store(request: pytest.FixtureRequest, tmp_data_dir: Path, clock: FakeClock) -> RecordStore:
    """両方の実装で同じ振る舞いを確認する。"""
    if request.param == "file":
        return FileRecordStore(data_dir=tmp_data_dir, clock=clock)
    return MemoryRecordStore(clock=clock)


class TestRecordStore:
    async def test_put_and_get(self, record_store: RecordStore) -> None:
        await record_store.put(Record(pk="SESSION#a", sk="METADATA", data={"status": "active"}))

        record = await record_store.get("SESSION#a", "METADATA")
        assert record is not None
        assert record.data == {"status": "active"}

    async def test_get_missing_returns_none(self, record_store: RecordStore) -> None:
        assert await record_store.get("SESSION#missing", "METADATA") is None

    async def test_put_overwrites(self, record_store: RecordStore) -> None:
        await record_store.put(Record(pk="SESSION#a", sk="METADATA", data={"v": 1}))
        await record_store.put(Record(pk="SESSION#a", sk="METADATA", data={"v": 2}))

        record = await record_store.get("SESSION#a", "METADATA")
        assert record is not None
        assert record.data["v"] == 2

    async def test_query_orders_by_sort_key(self, record_store: RecordStore) -> None:
        for sk in ["MESSAGE#0003", "MESSAGE#0001", "SPEC#0000000001", "MESSAGE#0002"]:
            await record_store.put(Record(pk="SESSION#a", sk=sk))

        ascending = await record_store.query("SESSION#a", "MESSAGE#")
        assert [r.sk for r in ascending] == ["MESSAGE#0001", "MESSAGE#0002", "MESSAGE#0003"]

        latest = await record_store.query("SESSION#a", "MESSAGE#", descending=True, limit=1)
        assert [r.sk for r in latest] == ["MESSAGE#0003"]

    async def test_query_is_scoped_to_partition(self, record_store: RecordStore) -> None:
        await record_store.put(Record(pk="SESSION#a", sk="MESSAGE#1"))
        await record_store.put(Record(pk="SESSION#b", sk="MESSAGE#1"))

        assert len(await record_store.query("SESSION#a", "MESSAGE#")) == 1
        assert await record_store.query("SESSION#c", "MESSAGE#") == []

    async def test_get_by_index(self, record_store: RecordStore) -> None:
        await record_store.put(Record(pk="SESSION#a", sk="METADATA", gsi1pk="MAGIC_LINK#tok1"))

        record = await record_store.get_by_index("MAGIC_LINK#tok1")
        assert record is not None
        assert record.pk == "SESSION#a"

    async def test_replaced_index_key_stops_resolving(self, record_store: RecordStore) -> None:
        await record_store.put(Record(pk="SESSION#a", sk="METADATA", gsi1pk="MAGIC_LINK#old"))
        await record_store.put(Record(pk="SESSION#a", sk="METADATA", gsi1pk="MAGIC_LINK#new"))

        assert await record_store.get_by_index("MAGIC_LINK#old") is None
        assert await record_store.get_by_index("MAGIC_LINK#new") is not None

    async def test_expired_records_behave_as_absent(self, record_store: RecordStore, clock: FakeClock) -> None:
        expires_at = clock() + timedelta(days=1)
        await record_store.put(
            Record(pk="SESSION#a", sk="METADATA", gsi1pk="MAGIC_LINK#t", expires_at=expires_at)
        )
        await record_store.put(Record(pk="SESSION#a", sk="MESSAGE#1", expires_at=expires_at))

        clock.advance(days=2)

        assert await record_store.get("SESSION#a", "METADATA") is None
        assert await record_store.get_by_index("MAGIC_LINK#t") is None
        assert await record_store.query("SESSION#a", "MESSAGE#") == []

    async def test_purge_expired(self, record_store: RecordStore, clock: FakeClock) -> None:
        await record_store.put(Record(pk="SESSION#a", sk="METADATA", expires_at=clock() + timedelta(hours=1)))
        await record_store.put(Record(pk="SESSION#b", sk="METADATA", expires_at=clock() + timedelta(days=30)))
        await record_store.put(Record(pk="SUBMISSION#s", sk="METADATA"))

        clock.advance(days=1)

        assert await record_store.purge_expired() == 1
        assert await record_store.get("SESSION#b", "METADATA") is not None
        assert await record_store.get("SUBMISSION#s", "METADATA") is not None


class TestFileRecordStore:
    async def test_records_survive_new_instance(self, tmp_data_dir: Path, clock: FakeClock) -> None:
        await FileRecordStore(tmp_data_dir, clock).put(Record(pk="SESSION#a", sk="METADATA", data={"x": 1}))

        record = await FileRecordStore(tmp_data_dir, clock).get("SESSION#a", "METADATA")
        assert record is not None
        assert record.data == {"x": 1}

    @pytest.mark.parametrize("key", ["", ".", "..", "../etc", "a/b", "a\\b"])
    async def test_rejects_path_traversal_keys(self, store: FileRecordStore, key: str) -> None:
        with pytest.raises(StorageError):
            await store.put(Record(pk=key, sk="METADATA"))

    async def test_no_temp_files_left_behind(self, store: FileRecordStore, tmp_data_dir: Path) -> None:
        await store.put(Record(pk="SESSION#a", sk="METADATA"))
        assert list(tmp_data_dir.rglob("*.tmp")) == []
