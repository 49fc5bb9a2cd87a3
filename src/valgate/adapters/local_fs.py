"""Local filesystem adapter implementing FileSystemPort.

Uses pathlib for all path operations. All paths are resolved relative to a
configurable base directory; absolute paths are used as given.
"""

from __future__ import annotations

from pathlib import Path


class LocalFileSystem:
    """Concrete FileSystemPort implementation backed by the local filesystem.

    Parameters
    ----------
    base_dir:
        Root directory for all operations. Paths passed to methods are resolved
        relative to this directory.

    """

    def __init__(self, base_dir: str) -> None:
        self._base = Path(base_dir).resolve()

    def _resolve(self, path: str) -> Path:
        """Resolve a relative path against the base directory."""
        return self._base / path

    def read_file(self, path: str) -> str:
        """Read and return the contents of a file."""
        return self._resolve(path).read_text(encoding="utf-8")

    def write_file(self, path: str, content: str) -> None:
        """Write content atomically (temp file, then rename), creating parents."""
        resolved = self._resolve(path)
        resolved.parent.mkdir(parents=True, exist_ok=True)
        tmp = resolved.with_name(f".{resolved.name}.tmp")
        tmp.write_text(content, encoding="utf-8")
        tmp.replace(resolved)

    def list_files(self, root: str, pattern: str = "**/*") -> list[str]:
        """List files matching the glob pattern under root, sorted.

        Paths are returned relative to the base directory when they live
        under it, otherwise absolute.
        """
        resolved_root = self._resolve(root)
        if not resolved_root.is_dir():
            return []
        results: list[str] = []
        for match in sorted(resolved_root.glob(pattern)):
            if not match.is_file():
                continue
            try:
                results.append(match.relative_to(self._base).as_posix())
            except ValueError:
                results.append(match.as_posix())
        return results

    def is_directory(self, path: str) -> bool:
        """Return True if the path is an existing directory."""
        return self._resolve(path).is_dir()
