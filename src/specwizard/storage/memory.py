"""プロセス内メモリ上のレコードストア。"""

from specwizard.storage.base import Clock, Record, select_range, utc_now


class MemoryRecordStore:
    """辞書ベースのレコードストア。単一プロセス構成とテスト用。"""

    def __init__(self, clock: Clock = utc_now) -> None:
        self._records: dict[tuple[str, str], Record] = {}
        self._index: dict[str, tuple[str, str]] = {}
        self._clock = clock

    async def get(self, pk: str, sk: str) -> Record | None:
        record = self._records.get((pk, sk))
        if record is None or not record.is_live(self._clock()):
            return None
        return record.model_copy(deep=True)

    async def put(self, record: Record) -> None:
        key = (record.pk, record.sk)
        previous = self._records.get(key)
        if previous is not None and previous.gsi1pk and previous.gsi1pk != record.gsi1pk:
            self._index.pop(previous.gsi1pk, None)
        self._records[key] = record.model_copy(deep=True)
        if record.gsi1pk:
            self._index[record.gsi1pk] = key

    async def query(
        self,
        pk: str,
        sk_prefix: str,
        *,
        descending: bool = False,
        limit: int | None = None,
    ) -> list[Record]:
        partition = [r.model_copy(deep=True) for (p, _), r in self._records.items() if p == pk]
        return select_range(partition, sk_prefix, self._clock(), descending=descending, limit=limit)

    async def get_by_index(self, gsi1pk: str) -> Record | None:
        key = self._index.get(gsi1pk)
        if key is None:
            return None
        record = await self.get(*key)
        if record is None or record.gsi1pk != gsi1pk:
            return None
        return record

    async def purge_expired(self) -> int:
        now = self._clock()
        expired = [key for key, r in self._records.items() if not r.is_live(now)]
        for key in expired:
            record = self._records.pop(key)
            if record.gsi1pk:
                self._index.pop(record.gsi1pk, None)
        return len(expired)
