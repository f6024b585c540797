"""Local file storage for ledger blobs."""

import os
import tempfile
from dataclasses import dataclass
from pathlib import Path

from fit_buddy.domain.errors import PersistenceError
from fit_buddy.services.ledger import LedgerStorage


@dataclass
class FileLedgerStorage(LedgerStorage):
    """Stores each key as a UTF-8 file inside a directory."""

    directory: Path

    @classmethod
    def create(cls, directory: str | Path) -> "FileLedgerStorage":
        """Create a storage rooted at a directory, creating it if needed."""
        path = Path(directory).expanduser()
        path.mkdir(parents=True, exist_ok=True)
        return cls(directory=path)

    def get_item(self, key: str) -> str | None:
        """Return the file contents for a key, if the file exists."""
        path = self._path(key)
        try:
            return path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except (OSError, UnicodeDecodeError) as exc:
            raise PersistenceError(f"Could not read {path.name}") from exc

    def set_item(self, key: str, value: str) -> None:
        """Atomically replace the file for a key."""
        path = self._path(key)
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                dir=self.directory, prefix=f".{path.name}.", suffix=".tmp"
            )
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as handle:
                    handle.write(value)
                    handle.flush()
                    os.fsync(handle.fileno())
                os.replace(tmp_name, path)
            except BaseException:
                Path(tmp_name).unlink(missing_ok=True)
                raise
        except OSError as exc:
            raise PersistenceError(f"Could not write {path.name}") from exc

    def _path(self, key: str) -> Path:
        safe = "".join(ch for ch in key if ch.isalnum() or ch in {"-", "_", "."})
        if not safe or safe.startswith("."):
            raise ValueError(f"Invalid storage key: {key!r}")
        return self.directory / f"{safe}.json"
