"""Object stores used to mirror snapshot blobs."""

import os
import tempfile
from pathlib import Path


class InMemoryObjectStore:
    """Dict-backed object store (tests and single-process hosts)."""

    def __init__(self) -> None:
        self.objects: dict[str, str] = {}

    def get(self, key: str) -> str | None:
        return self.objects.get(key)

    def put(self, key: str, text: str) -> None:
        self.objects[key] = text

    def delete(self, key: str) -> None:
        self.objects.pop(key, None)


class DirectoryObjectStore:
    """Object store laid out as files under a root directory

    Keys are ``/``-separated relative paths; ``..`` segments are refused.
    """

    def __init__(self, root: Path) -> None:
        self.root = root

    def _path_for(self, key: str) -> Path:
        parts = [part for part in key.split("/") if part]
        if not parts or any(part in {".", ".."} for part in parts):
            raise ValueError(f"Invalid object key: {key!r}")
        return self.root.joinpath(*parts)

    def get(self, key: str) -> str | None:
        path = self._path_for(key)
        if not path.exists():
            return None
        return path.read_text(encoding="utf-8")

    def put(self, key: str, text: str) -> None:
        path = self._path_for(key)
        path.parent.mkdir(parents=True, exist_ok=True)
        file_descriptor, temp_path = tempfile.mkstemp(
            prefix=f"{path.name}.", suffix=".tmp", dir=path.parent
        )
        try:
            with os.fdopen(file_descriptor, "w", encoding="utf-8") as handle:
                handle.write(text)
            os.replace(temp_path, path)
        except Exception:
            try:
                os.unlink(temp_path)
            except OSError:
                pass
            raise

    def delete(self, key: str) -> None:
        path = self._path_for(key)
        if path.exists():
            path.unlink()
