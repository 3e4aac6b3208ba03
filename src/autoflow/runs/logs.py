"""Workflow run logs: streamed download and archive extraction."""

from __future__ import annotations

import io
import logging
import zipfile
from pathlib import Path
from typing import TYPE_CHECKING, Dict, Iterator, Optional

if TYPE_CHECKING:
    from ..github.client import GitHubClient, RepoRef

logger = logging.getLogger(__name__)

CHUNK_SIZE = 64 * 1024


def iter_run_logs(client: "GitHubClient", repo: "RepoRef", run_id: int, chunk_size: int = CHUNK_SIZE) -> Iterator[bytes]:
    """
    Lazily stream the raw (zipped) log archive of a run.

    The generator is single-use. Closing it early (or dropping it) closes the
    underlying HTTP response, so the download stops once the consumer stops
    pulling.
    """
    response = client.open_run_logs(repo, run_id)
    try:
        for chunk in response.iter_content(chunk_size=chunk_size):
            if chunk:
                yield chunk
    finally:
        response.close()


def download_run_logs(client: "GitHubClient", repo: "RepoRef", run_id: int) -> bytes:
    return b"".join(iter_run_logs(client, repo, run_id))


def extract_log_archive(archive: bytes, target_dir: Optional[Path] = None) -> Dict[str, str]:
    """
    Unpack a run log archive into {file name: text}, one entry per job/step log.

    If `target_dir` is given the files are written there as well; entries that
    would escape `target_dir` are skipped.
    """
    logs: Dict[str, str] = {}
    with zipfile.ZipFile(io.BytesIO(archive)) as bundle:
        for info in bundle.infolist():
            if info.is_dir():
                continue
            text = bundle.read(info).decode("utf-8", errors="replace")
            logs[info.filename] = text
            if target_dir is not None:
                destination = (target_dir / info.filename).resolve()
                if target_dir.resolve() not in destination.parents:
                    logger.warning("Skipping archive entry outside target dir: %s", info.filename)
                    continue
                destination.parent.mkdir(parents=True, exist_ok=True)
                destination.write_text(text, encoding="utf-8")
    return logs


def iter_log_lines(logs: Dict[str, str]) -> Iterator[str]:
    """Yield log text as '<file> | <line>' chunks, files in name order."""
    for name in sorted(logs):
        for line in logs[name].splitlines():
            yield f"{name} | {line}"
