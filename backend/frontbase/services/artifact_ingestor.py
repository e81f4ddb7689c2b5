"""
Build artifact ingestion.

The CI runner uploads a zip whose top level contains the build output
under "dist/". ingest() extracts it into UPLOAD_DIR/<project slug>,
streaming each entry to disk, and the caller uploads everything under
dist/ to object storage keyed "<owner>/<repo>/<relative path>".

Use ingested() rather than ingest() directly: it deletes both the archive
and the extraction directory however the block exits.
"""

import asyncio
import logging
import os
import shutil
import zipfile
from contextlib import asynccontextmanager
from dataclasses import dataclass
from pathlib import Path, PurePosixPath
from typing import AsyncIterator, Protocol

from frontbase.config import UPLOAD_DIR
from frontbase.errors import ArtifactError

logger = logging.getLogger(__name__)

OUTPUT_DIR_NAME = "dist"
UPLOAD_CONCURRENCY = 8


class ObjectStorage(Protocol):
    async def upload_file(self, path: str, key: str) -> None: ...


@dataclass
class IngestedArtifact:
    extract_dir: Path
    output_dir: Path


def _safe_target(root: Path, name: str) -> Path:
    """Resolve an archive entry name inside root, rejecting anything that escapes it."""
    parts = PurePosixPath(name.replace("\\", "/")).parts
    if not parts or parts[0] == "/" or ".." in parts:
        raise ArtifactError(f"Unsafe path in archive: {name!r}")
    target = root.joinpath(*parts)
    if not target.resolve().is_relative_to(root.resolve()):
        raise ArtifactError(f"Unsafe path in archive: {name!r}")
    return target


def _extract(archive_path: Path, extract_dir: Path) -> int:
    """Stream every entry of the archive into extract_dir. Returns the file count."""
    files = 0
    try:
        with zipfile.ZipFile(archive_path) as archive:
            for info in archive.infolist():
                target = _safe_target(extract_dir, info.filename)
                if info.is_dir():
                    target.mkdir(parents=True, exist_ok=True)
                    continue
                target.parent.mkdir(parents=True, exist_ok=True)
                with archive.open(info) as src, open(target, "wb") as dst:
                    shutil.copyfileobj(src, dst)
                files += 1
    except (zipfile.BadZipFile, zipfile.LargeZipFile) as exc:
        raise ArtifactError(f"Corrupt archive: {exc}") from exc
    return files


def _remove(path: Path) -> None:
    if path.is_dir():
        shutil.rmtree(path, ignore_errors=True)
    elif path.exists():
        path.unlink()


async def cleanup(*paths: Path) -> None:
    for path in paths:
        try:
            await asyncio.to_thread(_remove, path)
        except OSError as exc:
            logger.warning("Could not remove %s: %s", path, exc)


async def ingest(
    archive_path: Path, project_slug: str, upload_dir: str | Path = UPLOAD_DIR
) -> IngestedArtifact:
    """
    Extract the archive into a per-slug directory and locate its output dir.

    On failure the archive and the partial extraction are removed before
    the error propagates.
    """
    archive_path = Path(archive_path)
    root = Path(upload_dir)
    extract_dir = _safe_target(root, project_slug)
    try:
        # Leftovers of an earlier upload of the same project.
        await asyncio.to_thread(_remove, extract_dir)
        extract_dir.mkdir(parents=True, exist_ok=True)
        count = await asyncio.to_thread(_extract, archive_path, extract_dir)
        output_dir = extract_dir / OUTPUT_DIR_NAME
        if not output_dir.is_dir():
            raise ArtifactError(f"Archive has no {OUTPUT_DIR_NAME}/ directory")
    except Exception:
        logger.error("Extracting %s failed, cleaning up", archive_path)
        await cleanup(archive_path, extract_dir)
        raise

    logger.info("Extracted %d files from %s into %s", count, archive_path.name, extract_dir)
    return IngestedArtifact(extract_dir=extract_dir, output_dir=output_dir)


@asynccontextmanager
async def ingested(
    archive_path: Path, project_slug: str, upload_dir: str | Path = UPLOAD_DIR
) -> AsyncIterator[IngestedArtifact]:
    archive_path = Path(archive_path)
    artifact = None
    try:
        artifact = await ingest(archive_path, project_slug, upload_dir)
        yield artifact
    finally:
        paths = [archive_path]
        if artifact is not None:
            paths.append(artifact.extract_dir)
        await cleanup(*paths)


def _walk_files(output_dir: Path) -> list[tuple[str, str]]:
    files = []
    for dirpath, _, filenames in os.walk(output_dir):
        for filename in filenames:
            full = Path(dirpath) / filename
            files.append((str(full), full.relative_to(output_dir).as_posix()))
    return files


async def upload_directory(
    storage: ObjectStorage,
    output_dir: Path,
    owner: str,
    repo: str,
    concurrency: int = UPLOAD_CONCURRENCY,
) -> list[str]:
    """Upload every file under output_dir. Returns the object keys written."""
    files = await asyncio.to_thread(_walk_files, Path(output_dir))
    semaphore = asyncio.Semaphore(concurrency)

    async def upload(path: str, relative: str) -> str:
        key = f"{owner}/{repo}/{relative}"
        async with semaphore:
            await storage.upload_file(path, key)
        return key

    # A failed upload cancels the rest; none outlives this call.
    try:
        async with asyncio.TaskGroup() as group:
            tasks = [group.create_task(upload(path, rel)) for path, rel in files]
    except ExceptionGroup as failed:
        logger.error("Upload of %s/%s failed: %d of %d files", owner, repo, len(failed.exceptions), len(files))
        raise failed.exceptions[0]

    keys = [task.result() for task in tasks]
    logger.info("Uploaded %d files for %s/%s", len(keys), owner, repo)
    return keys
