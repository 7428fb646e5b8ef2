"""
Filesystem Storage Implementation

DESIGN DECISION: The data directory is the database. Each ledger file is
read whole, changed in memory and replaced whole.

How a write reaches disk:
1. Take the file's exclusive lock
2. Compare the current content hash with the hash the caller read
   (ConflictError on mismatch: someone edited the file meanwhile)
3. Encode, and re-parse the encoded text before anything is written
4. Write a temp file in the same directory, fsync, os.replace over the target

os.replace is atomic on POSIX and Windows, so readers see either the old
file or the new one, never a mix. A failed write removes its temp file
and raises LedgerIOError; it is not retried.

TRADEOFFS:
- No cross-process locking (the engine is the only writer)
- Whole-file rewrites (monthly files stay small)
"""

import hashlib
import os
import re
import tempfile
from pathlib import Path

import structlog

from beanledger.errors import ConflictError, LedgerIOError
from beanledger.services.codec import LedgerCodec
from beanledger.services.storage.interface import FileSnapshot, LedgerStoreInterface
from beanledger.services.storage.locks import LockRegistry


MONTH_FILE_RE = re.compile(r"^(\d{4})-(\d{2})\.bean$")

logger = structlog.get_logger(__name__)


def content_hash(text: str) -> str:
    """sha256 of the text; a missing file hashes like empty text."""
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


EMPTY_HASH = content_hash("")


class FileLedgerStore(LedgerStoreInterface):
    """
    Ledger files in one directory, guarded by a LockRegistry.

    Usage:
        store = FileLedgerStore(Path("data"), codec, locks)
        snapshot = store.read("2024-03.bean")
        store.write("2024-03.bean", snapshot.directives + [txn], snapshot.content_hash)
    """

    def __init__(
        self,
        data_dir: Path,
        codec: LedgerCodec,
        locks: LockRegistry,
        encoding: str = "utf-8",
    ):
        self.data_dir = Path(data_dir)
        self.codec = codec
        self.locks = locks
        self.encoding = encoding

    def path(self, name: str) -> Path:
        if not name or "/" in name or "\\" in name or name in (".", ".."):
            raise ValueError(f"Ledger files must be bare names, got {name!r}")
        return self.data_dir / name

    # =========================================================================
    # READS
    # =========================================================================

    def read(self, name: str) -> FileSnapshot:
        with self.locks.get(name).shared():
            path = self.path(name)
            exists = path.exists()
            text = self._read_raw(name)
        parsed = self.codec.parse(text, file=name)
        return FileSnapshot(
            name=name,
            directives=parsed.directives,
            content_hash=content_hash(text),
            spans=parsed.spans,
            exists=exists,
        )

    def _read_raw(self, name: str) -> str:
        try:
            with open(self.path(name), encoding=self.encoding, newline="") as f:
                return f.read()
        except FileNotFoundError:
            return ""
        except OSError as e:
            raise LedgerIOError(f"Cannot read {name}: {e}", file=name) from e

    def exists(self, name: str) -> bool:
        return self.path(name).is_file()

    def list_files(self) -> list[str]:
        if not self.data_dir.is_dir():
            return []
        return sorted(p.name for p in self.data_dir.glob("*.bean") if p.is_file())

    def list_month_files(self) -> list[str]:
        return [name for name in self.list_files() if MONTH_FILE_RE.match(name)]

    # =========================================================================
    # WRITES
    # =========================================================================

    def write(self, name: str, directives: list, expected_hash: str) -> str:
        with self.locks.get(name).exclusive():
            self._check_hash(name, expected_hash)
            text = self.codec.encode_checked(directives, file=name)
            return self.atomic_replace(name, text)

    def atomic_replace(self, name: str, text: str) -> str:
        target = self.path(name)
        with self.locks.get(name).exclusive():
            try:
                self.data_dir.mkdir(parents=True, exist_ok=True)
            except OSError as e:
                raise LedgerIOError(f"Cannot create {self.data_dir}: {e}", file=name) from e

            fd, tmp_path = tempfile.mkstemp(
                prefix=f".{name}.", suffix=".tmp", dir=self.data_dir
            )
            try:
                with os.fdopen(fd, "w", encoding=self.encoding, newline="") as f:
                    f.write(text)
                    f.flush()
                    os.fsync(f.fileno())
                os.replace(tmp_path, target)
            except OSError as e:
                try:
                    os.remove(tmp_path)
                except FileNotFoundError:
                    pass
                logger.error("atomic_replace_failed", file=name, error=str(e))
                raise LedgerIOError(f"Cannot write {name}: {e}", file=name) from e

        new_hash = content_hash(text)
        logger.debug("file_written", file=name, hash=new_hash[:12], size=len(text))
        return new_hash

    def remove(self, name: str, expected_hash: str) -> None:
        with self.locks.get(name).exclusive():
            self._check_hash(name, expected_hash)
            try:
                os.remove(self.path(name))
            except FileNotFoundError:
                pass
            except OSError as e:
                raise LedgerIOError(f"Cannot remove {name}: {e}", file=name) from e
        logger.debug("file_removed", file=name)

    def _check_hash(self, name: str, expected_hash: str) -> None:
        actual = content_hash(self._read_raw(name))
        if actual != expected_hash:
            raise ConflictError(name, expected_hash, actual)
