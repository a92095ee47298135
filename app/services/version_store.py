import logging
import os
import re
import shutil
import tempfile
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from urllib.parse import quote

from app.config import settings
from app.services.pdf_bytes import sha256_hex

logger = logging.getLogger(__name__)

_ILLEGAL_CHARS = re.compile(r'[<>:"/\\|?*\x00-\x1f]')
_PDF_SUFFIX = re.compile(r"(\.pdf)+$", re.IGNORECASE)


@dataclass(frozen=True)
class WriteResult:
    path: Path
    file_name: str
    bytes_written: int

    @property
    def unchanged(self) -> bool:
        return self.bytes_written == 0


class VersionStore:
    @staticmethod
    def user_dir(owner_id: str) -> Path:
        safe_owner = _ILLEGAL_CHARS.sub("", str(owner_id)).strip(" .") or "anonymous"
        directory = Path(settings.storage_root) / safe_owner
        directory.mkdir(parents=True, exist_ok=True)
        return directory

    @staticmethod
    def sanitize_file_name(name: str | None) -> str:
        cleaned = _ILLEGAL_CHARS.sub("", name or "").strip()
        stem = _PDF_SUFFIX.sub("", cleaned).strip().rstrip(".")
        return f"{stem or 'document'}.pdf"

    @staticmethod
    def deterministic_name(document_id, version: int) -> str:
        return f"{document_id}_v{version}.pdf"

    @staticmethod
    def file_url(path) -> str:
        return f"{settings.file_url_prefix}?path={quote(str(path), safe='')}"

    @staticmethod
    def matches(path: Path, data: bytes) -> bool:
        try:
            if not path.is_file() or path.stat().st_size != len(data):
                return False
            return path.read_bytes() == data
        except OSError:
            return False

    @staticmethod
    def _reusable(path: Path, data: bytes, owned: Path | None) -> bool:
        """Only the caller's own file may be kept as-is; any other file is taken."""
        if owned is None or path.resolve() != Path(owned).resolve():
            return False
        return VersionStore.matches(path, data)

    @staticmethod
    def _atomic_write(path: Path, data: bytes) -> None:
        fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "wb") as handle:
                handle.write(data)
                handle.flush()
                os.fsync(handle.fileno())
            os.replace(tmp_name, path)
        except BaseException:
            try:
                os.unlink(tmp_name)
            except OSError:
                pass
            raise

    @staticmethod
    def write_deterministic(directory: Path, document_id, version: int, data: bytes) -> WriteResult:
        """Write ``{document_id}_v{version}.pdf``; identical content is a no-op."""
        file_name = VersionStore.deterministic_name(document_id, version)
        path = directory / file_name
        if VersionStore.matches(path, data):
            logger.debug("Deterministic write of %s skipped (identical content)", path)
            return WriteResult(path, file_name, 0)
        VersionStore._atomic_write(path, data)
        logger.info("Wrote %d bytes to %s", len(data), path)
        return WriteResult(path, file_name, len(data))

    @staticmethod
    def write_named(
        directory: Path, name: str, data: bytes, owned: Path | None = None
    ) -> WriteResult:
        """Write under a sanitized name without clobbering an existing file.

        An existing file is only reused when it is ``owned`` and already holds
        ``data``; identical bytes under someone else's name do not count.
        """
        file_name = VersionStore.sanitize_file_name(name)
        path = directory / file_name
        if VersionStore._reusable(path, data, owned):
            return WriteResult(path, file_name, 0)
        if path.exists():
            raise FileExistsError(f"{file_name} is already taken")
        VersionStore._atomic_write(path, data)
        logger.info("Wrote %d bytes to %s", len(data), path)
        return WriteResult(path, file_name, len(data))

    @staticmethod
    def overwrite(path: Path, data: bytes) -> WriteResult:
        if VersionStore.matches(path, data):
            return WriteResult(path, path.name, 0)
        VersionStore._atomic_write(path, data)
        logger.info("Overwrote %s with %d bytes", path, len(data))
        return WriteResult(path, path.name, len(data))

    @staticmethod
    def _stable_candidates(stem: str, data: bytes, preferred_version: int | None):
        if preferred_version and preferred_version > 1:
            yield f"{stem}_v{preferred_version}.pdf"
        yield f"{stem}.pdf"
        for index in range(1, settings.max_name_candidates + 1):
            yield f"{stem}_v{index}.pdf"
        yield f"{stem}_{sha256_hex(data)[:12]}.pdf"

    @staticmethod
    def write_stable(
        directory: Path,
        base_name: str,
        data: bytes,
        preferred_version: int | None = None,
        owned: Path | None = None,
    ) -> WriteResult:
        """Write to the first free candidate name, or keep ``owned`` if identical.

        Tries a version-suffixed name, the sanitized base name, a bounded run
        of ``_vN`` suffixes and a content-hash suffix, then falls back to a
        timestamp suffix so the write always lands somewhere.
        """
        stem = VersionStore.sanitize_file_name(base_name)[: -len(".pdf")]
        seen: set[str] = set()
        for file_name in VersionStore._stable_candidates(stem, data, preferred_version):
            if file_name in seen:
                continue
            seen.add(file_name)
            path = directory / file_name
            if VersionStore._reusable(path, data, owned):
                return WriteResult(path, file_name, 0)
            if path.exists():
                continue
            VersionStore._atomic_write(path, data)
            logger.info("Wrote %d bytes to %s", len(data), path)
            return WriteResult(path, file_name, len(data))

        stamp = datetime.now(timezone.utc).strftime("%Y%m%d%H%M%S%f")
        file_name = f"{stem}_{stamp}.pdf"
        path = directory / file_name
        logger.warning("All candidate names for %s taken; using %s", stem, file_name)
        VersionStore._atomic_write(path, data)
        return WriteResult(path, file_name, len(data))

    @staticmethod
    def copy(source: Path, target: Path) -> WriteResult:
        if source.resolve() == target.resolve():
            return WriteResult(target, target.name, 0)
        fd, tmp_name = tempfile.mkstemp(dir=target.parent, prefix=f".{target.name}.", suffix=".tmp")
        os.close(fd)
        try:
            shutil.copyfile(source, tmp_name)
            os.replace(tmp_name, target)
        except BaseException:
            try:
                os.unlink(tmp_name)
            except OSError:
                pass
            raise
        size = target.stat().st_size
        logger.info("Copied %s to %s (%d bytes)", source, target, size)
        return WriteResult(target, target.name, size)


store = VersionStore()
