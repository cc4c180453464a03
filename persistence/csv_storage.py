"""
CSV storage abstraction using pandas with basic file locking.

Notes:
- Floats are written at full precision; rounding is a display concern.
- Ensure headers exist for empty file creation.
- ``lock`` provides an exclusive, cross-process lock on an arbitrary key
  file and is used to serialise per-athlete ledger cascades.
"""

from __future__ import annotations

import io
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterable, Iterator, List, Optional

import pandas as pd
from pandas.errors import EmptyDataError
import portalocker


@dataclass
class CsvStorage:
    base_dir: Path

    def _path(self, relative: str | Path) -> Path:
        p = Path(self.base_dir) / Path(relative)
        p.parent.mkdir(parents=True, exist_ok=True)
        return p

    def exists(self, relative: str | Path) -> bool:
        return (Path(self.base_dir) / Path(relative)).exists()

    def read_csv(
        self, relative: str | Path, dtypes: Optional[Dict[str, str]] = None
    ) -> pd.DataFrame:
        path = self._path(relative)
        if not path.exists():
            if dtypes:
                return pd.DataFrame(columns=list(dtypes.keys())).astype(dtypes)
            return pd.DataFrame()
        with portalocker.Lock(str(path), mode="r", timeout=10, flags=portalocker.LOCK_SH | portalocker.LOCK_NB):
            try:
                df = pd.read_csv(path, dtype=dtypes, float_precision="round_trip")
            except EmptyDataError:
                if dtypes:
                    return pd.DataFrame(columns=list(dtypes.keys())).astype(dtypes)
                return pd.DataFrame()
        if dtypes:
            for col, typ in dtypes.items():
                if col not in df.columns:
                    df[col] = pd.Series(dtype=typ)
        return df

    def write_csv(self, relative: str | Path, df: pd.DataFrame) -> None:
        path = self._path(relative)
        # Render first so the exclusive lock is held only for the write
        csv_buf = io.StringIO()
        df.to_csv(csv_buf, index=False)
        data = csv_buf.getvalue()
        with portalocker.Lock(str(path), mode="a", timeout=10, flags=portalocker.LOCK_EX | portalocker.LOCK_NB):
            path.write_text(data)

    def delete(self, relative: str | Path) -> None:
        path = Path(self.base_dir) / Path(relative)
        if path.exists():
            path.unlink()

    def append_row(
        self, relative: str | Path, row: Dict[str, object], columns: Iterable[str]
    ) -> None:
        path = self._path(relative)
        with portalocker.Lock(str(path), mode="a", timeout=10, flags=portalocker.LOCK_EX | portalocker.LOCK_NB):
            empty = path.stat().st_size == 0
            df = pd.DataFrame([row], columns=list(columns))
            if not empty:
                df.to_csv(path, mode="a", index=False, header=False)
            else:
                df.to_csv(path, index=False, header=True)

    def upsert(self, relative: str | Path, key_cols: List[str], row: Dict[str, object]) -> None:
        self.upsert_many(relative, key_cols, [row])

    def upsert_many(
        self,
        relative: str | Path,
        key_cols: List[str],
        rows: List[Dict[str, object]],
        columns: Optional[List[str]] = None,
    ) -> None:
        """Insert or replace ``rows`` matched on ``key_cols`` in a single write."""
        if not rows:
            return
        incoming = pd.DataFrame(rows)
        df = self.read_csv(relative, dtypes={k: "str" for k in key_cols})
        if df.empty:
            merged = incoming
        else:
            incoming_keys = set(_key_tuples(incoming, key_cols))
            keep = [key not in incoming_keys for key in _key_tuples(df, key_cols)]
            existing = df[keep]
            merged = (
                pd.concat([existing, incoming], ignore_index=True)
                if not existing.empty
                else incoming
            )
        if columns:
            for col in columns:
                if col not in merged.columns:
                    merged[col] = None
            merged = merged[columns]
        self.write_csv(relative, merged)

    @contextmanager
    def lock(self, relative: str | Path, timeout: float = 30.0) -> Iterator[None]:
        """Hold an exclusive lock on ``relative`` for the duration of the block.

        Raises ``portalocker.exceptions.LockException`` when the lock cannot be
        acquired within ``timeout`` seconds.
        """
        path = self._path(relative)
        with portalocker.Lock(
            str(path),
            mode="a",
            timeout=timeout,
            flags=portalocker.LOCK_EX | portalocker.LOCK_NB,
        ):
            yield


def _key_tuples(df: pd.DataFrame, key_cols: List[str]) -> List[tuple]:
    return list(zip(*(df[k].astype(str) for k in key_cols)))
