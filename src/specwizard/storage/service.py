"""ローカルファイルシステムベースのレコードストア。"""

import json
import logging
import os
import tempfile
from pathlib import Path
from urllib.parse import quote

from specwizard.models.errors import StorageError, StorageUnavailableError
from specwizard.storage.base import Clock, Record, select_range, utc_now

logger = logging.getLogger(__name__)

_FORBIDDEN_KEY_CHARS = ("/", "\\", "\x00")


def _encode_key(key: str) -> str:
    # ディレクトリトラバーサル防止
    if not key or key in (".", "..") or any(c in key for c in _FORBIDDEN_KEY_CHARS):
        raise StorageError(f"Invalid key: {key!r}")
    return quote(key, safe="")


class FileRecordStore:
    """ローカルファイルシステムを利用した単一テーブル型のデータ永続化層。

    レコードは ``records/<pk>/<sk>.json`` に、二次インデックスは
    ``index/<gsi1pk>.json`` に保存する。書き込みは一時ファイルからの
    置き換えで行うため、キー単位ではアトミックになる。
    """

    def __init__(self, data_dir: Path, clock: Clock = utc_now) -> None:
        self._data_dir = data_dir
        self._records_dir = data_dir / "records"
        self._index_dir = data_dir / "index"
        self._clock = clock

    def _partition_dir(self, pk: str) -> Path:
        return self._records_dir / _encode_key(pk)

    def _record_file(self, pk: str, sk: str) -> Path:
        return self._partition_dir(pk) / f"{_encode_key(sk)}.json"

    def _index_file(self, gsi1pk: str) -> Path:
        return self._index_dir / f"{_encode_key(gsi1pk)}.json"

    @staticmethod
    def _write_atomic(path: Path, text: str) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=path.parent, suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(text)
            os.replace(tmp_name, path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise

    @staticmethod
    def _read_record(path: Path) -> Record | None:
        try:
            text = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        return Record.model_validate_json(text)

    async def get(self, pk: str, sk: str) -> Record | None:
        """主キーでレコードを1件取得する。存在しない場合はNone。"""
        path = self._record_file(pk, sk)
        try:
            record = self._read_record(path)
        except OSError as e:
            raise StorageUnavailableError(f"Failed to read {pk}/{sk}: {e}") from e
        if record is None or not record.is_live(self._clock()):
            return None
        return record

    async def put(self, record: Record) -> None:
        """レコードを上書き保存し、二次インデックスを更新する。"""
        path = self._record_file(record.pk, record.sk)
        try:
            previous = self._read_record(path)
            if previous is not None and previous.gsi1pk and previous.gsi1pk != record.gsi1pk:
                # 置き換えられたトークン等のインデックスは即座に無効化する
                self._index_file(previous.gsi1pk).unlink(missing_ok=True)
            self._write_atomic(path, record.model_dump_json())
            if record.gsi1pk:
                pointer = json.dumps({"pk": record.pk, "sk": record.sk})
                self._write_atomic(self._index_file(record.gsi1pk), pointer)
        except OSError as e:
            raise StorageUnavailableError(f"Failed to write {record.pk}/{record.sk}: {e}") from e

    async def query(
        self,
        pk: str,
        sk_prefix: str,
        *,
        descending: bool = False,
        limit: int | None = None,
    ) -> list[Record]:
        """パーティション内をソートキーのプレフィックスで範囲検索する。"""
        partition = self._partition_dir(pk)
        if not partition.exists():
            return []
        try:
            records = [r for p in partition.glob("*.json") if (r := self._read_record(p)) is not None]
        except OSError as e:
            raise StorageUnavailableError(f"Failed to query {pk}: {e}") from e
        return select_range(records, sk_prefix, self._clock(), descending=descending, limit=limit)

    async def get_by_index(self, gsi1pk: str) -> Record | None:
        """二次インデックスのキーでレコードを取得する。"""
        try:
            text = self._index_file(gsi1pk).read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError as e:
            raise StorageUnavailableError(f"Failed to read index {gsi1pk}: {e}") from e
        pointer = json.loads(text)
        record = await self.get(pointer["pk"], pointer["sk"])
        if record is None or record.gsi1pk != gsi1pk:
            return None
        return record

    async def purge_expired(self) -> int:
        """有効期限切れのレコードを物理削除し、削除件数を返す。"""
        if not self._records_dir.exists():
            return 0
        now = self._clock()
        purged = 0
        try:
            for path in self._records_dir.glob("*/*.json"):
                record = self._read_record(path)
                if record is None or record.is_live(now):
                    continue
                if record.gsi1pk:
                    self._index_file(record.gsi1pk).unlink(missing_ok=True)
                path.unlink(missing_ok=True)
                purged += 1
        except OSError as e:
            raise StorageUnavailableError(f"Failed to purge expired records: {e}") from e
        if purged:
            logger.info("Purged %d expired records", purged)
        return purged
