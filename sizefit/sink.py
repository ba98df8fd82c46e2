from __future__ import annotations

import logging
import os
import tempfile
from pathlib import Path
from typing import Protocol

from .errors import PersistError
from .results import OutputArtifact


log = logging.getLogger(__name__)

# Where each format lands under the sink root.
FORMAT_SUBDIR = {
    "jpg": "Pictures",
    "pdf": "Documents",
}


class ArtifactSink(Protocol):
    def persist(self, data: bytes, name: str, ext: str) -> OutputArtifact: ...


class DirectorySink:
    """Write finished artifacts into a folder tree on disk."""

    def __init__(self, root: Path, overwrite: bool = False) -> None:
        self.root = Path(root)
        self.overwrite = overwrite

    def persist(self, data: bytes, name: str, ext: str) -> OutputArtifact:
        ext = ext.lower().lstrip(".")
        out_dir = self.root / FORMAT_SUBDIR.get(ext, "")
        out_path = out_dir / f"{_safe_name(name)}.{ext}"

        try:
            out_dir.mkdir(parents=True, exist_ok=True)

            if out_path.exists() and not self.overwrite:
                out_path = _next_available_name(out_path)

            # Write to a temp file first so a failed write never leaves half a file
            tmp_path = _write_temp(data, out_dir, ext)
            _finalize_output(tmp_path, out_path, overwrite=self.overwrite)
        except OSError as exc:
            raise PersistError(f"Could not write {out_path}: {exc}") from exc

        log.info("wrote %s (%d bytes)", out_path, len(data))
        return OutputArtifact(
            file_name=out_path.name,
            location=str(out_dir),
            size_bytes=len(data),
            path=out_path,
            actual_format=ext,
        )


def _safe_name(name: str) -> str:
    cleaned = "".join("_" if c in '<>:"/\\|?*' else c for c in name).strip()
    return cleaned or "output"


def _next_available_name(path: Path) -> Path:
    # scan.pdf -> scan (1).pdf
    base = path.with_suffix("")
    ext = path.suffix
    i = 1
    while True:
        candidate = Path(f"{base} ({i}){ext}")
        if not candidate.exists():
            return candidate
        i += 1


def _write_temp(data: bytes, out_dir: Path, ext: str) -> Path:
    # Create temp file in output dir so move/rename is cheap
    fd, tmp_name = tempfile.mkstemp(prefix="sizefit_", suffix=f".{ext}", dir=str(out_dir))
    tmp_path = Path(tmp_name)
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(data)
    except OSError:
        tmp_path.unlink(missing_ok=True)
        raise
    return tmp_path


def _finalize_output(tmp_path: Path, out_path: Path, overwrite: bool) -> None:
    if overwrite and out_path.exists():
        out_path.unlink()
    tmp_path.replace(out_path)
