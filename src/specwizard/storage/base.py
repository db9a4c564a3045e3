"""キー・バリュー永続化層の共通定義。"""

from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any, Protocol

from pydantic import BaseModel, Field

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(UTC)


class Record(BaseModel):
    """単一テーブル上の1レコード。

    pk/skの複合主キーで一意に識別される。gsi1pkは二次インデックス
    （復元トークン・受付番号）の検索キー。expires_atを過ぎたレコードは
    存在しないものとして扱われ、purge_expiredで物理削除される。
    """

    pk: str
    sk: str
    gsi1pk: str | None = None
    gsi1sk: str | None = None
    expires_at: datetime | None = None
    data: dict[str, Any] = Field(default_factory=dict)

    def is_live(self, now: datetime) -> bool:
        return self.expires_at is None or now < self.expires_at


class RecordStore(Protocol):
    """SessionManagerが利用する4つの永続化プリミティブ。

    書き込みはキー単位のlast-writer-winsで、複数キーにまたがる
    トランザクションは提供しない。
    """

    async def get(self, pk: str, sk: str) -> Record | None: ...

    async def put(self, record: Record) -> None: ...

    async def query(
        self,
        pk: str,
        sk_prefix: str,
        *,
        descending: bool = False,
        limit: int | None = None,
    ) -> list[Record]: ...

    async def get_by_index(self, gsi1pk: str) -> Record | None: ...

    async def purge_expired(self) -> int: ...


def select_range(
    records: list[Record],
    sk_prefix: str,
    now: datetime,
    *,
    descending: bool,
    limit: int | None,
) -> list[Record]:
    """プレフィックス一致・有効期限・並び順・件数制限を適用する。"""
    matched = [r for r in records if r.sk.startswith(sk_prefix) and r.is_live(now)]
    matched.sort(key=lambda r: r.sk, reverse=descending)
    if limit is not None:
        matched = matched[:limit]
    return matched
