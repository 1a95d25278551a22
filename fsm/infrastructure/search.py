"""Filename and content search over a directory tree.

Both searches walk the tree with os.walk, check the cancellation token once per
directory (filename search) or per file (content search), and stop after
`max_results` hits. Patterns containing glob characters are matched with
fnmatch; anything else is a case-insensitive substring match.
"""

import fnmatch
import logging
import os
import time
from pathlib import Path
from typing import Callable, Iterator, List, Optional, Tuple
from fsm.domain.actions import Action, ShowContentSearchResults, ShowFilenameSearchResults
from fsm.domain.models import ContentMatch, ObjectInfo, ObjectKind
from fsm.infrastructure.task_registry import CancellationToken

logger = logging.getLogger(__name__)

BINARY_SNIFF_BYTES = 8192
MAX_CONTENT_FILE_BYTES = 16 * 1024 * 1024
MAX_LINE_CHARS = 500
_GLOB_CHARS = set("*?[")


def name_matcher(pattern: str) -> Callable[[str], bool]:
    needle = pattern.lower()
    if _GLOB_CHARS & set(pattern):
        return lambda name: fnmatch.fnmatch(name.lower(), needle)
    return lambda name: needle in name.lower()


def _walk(root: Path, show_hidden: bool) -> Iterator[Tuple[str, List[str], List[str]]]:
    for dirpath, dirs, files in os.walk(root):
        if not show_hidden:
            dirs[:] = [d for d in dirs if not d.startswith(".")]
            files = [f for f in files if not f.startswith(".")]
        dirs.sort()
        files.sort()
        yield dirpath, dirs, files


def _is_cancelled(token: Optional[CancellationToken]) -> bool:
    return token is not None and token.is_cancelled


def search_filenames(
    root: Path,
    pattern: str,
    cancel_token: Optional[CancellationToken] = None,
    max_results: int = 1000,
    show_hidden: bool = False,
) -> Optional[List[ObjectInfo]]:
    """Entries under `root` whose name matches `pattern`. None if cancelled."""
    matches = name_matcher(pattern)
    results: List[ObjectInfo] = []
    for dirpath, dirs, files in _walk(root, show_hidden):
        if _is_cancelled(cancel_token):
            return None
        for name, kind in [(d, ObjectKind.DIRECTORY) for d in dirs] + [(f, ObjectKind.FILE) for f in files]:
            if not matches(name):
                continue
            path = Path(dirpath) / name
            if kind == ObjectKind.FILE and path.is_symlink():
                kind = ObjectKind.SYMLINK
            extension = None if kind == ObjectKind.DIRECTORY else (path.suffix.lower().lstrip(".") or None)
            results.append(ObjectInfo(path=path, name=name, kind=kind, extension=extension))
            if len(results) >= max_results:
                return results
    return results


def _looks_binary(path: Path) -> bool:
    with open(path, "rb") as f:
        return b"\x00" in f.read(BINARY_SNIFF_BYTES)


def search_contents(
    root: Path,
    query: str,
    cancel_token: Optional[CancellationToken] = None,
    max_results: int = 1000,
    show_hidden: bool = False,
) -> Optional[List[ContentMatch]]:
    """Lines containing `query` (case-insensitive) in text files under `root`. None if cancelled."""
    needle = query.lower()
    results: List[ContentMatch] = []
    for dirpath, _dirs, files in _walk(root, show_hidden):
        for name in files:
            if _is_cancelled(cancel_token):
                return None
            path = Path(dirpath) / name
            try:
                if path.is_symlink() or not path.is_file():
                    continue
                if path.stat().st_size > MAX_CONTENT_FILE_BYTES or _looks_binary(path):
                    continue
                with open(path, "r", encoding="utf-8", errors="replace") as f:
                    for line_number, line in enumerate(f, start=1):
                        if needle in line.lower():
                            results.append(
                                ContentMatch(path=path, line_number=line_number, line=line.rstrip("\r\n")[:MAX_LINE_CHARS])
                            )
                            if len(results) >= max_results:
                                return results
            except OSError as e:
                logger.debug(f"SEARCH_SKIP: {path}: {e}")
    return results


def filename_search_task(
    search_id: int,
    root: Path,
    pattern: str,
    post: Callable[[Action], None],
    max_results: int = 1000,
    show_hidden: bool = False,
) -> Callable[[CancellationToken], None]:
    """Registry work that posts ShowFilenameSearchResults unless cancelled."""

    def work(token: CancellationToken) -> None:
        start = time.monotonic()
        results = search_filenames(root, pattern, token, max_results, show_hidden)
        if results is None:
            logger.debug(f"SEARCH_CANCELLED: filename '{pattern}' in {root}")
            return
        logger.info(f"SEARCH_DONE: filename '{pattern}' in {root}: {len(results)} hit(s) in {time.monotonic() - start:.2f}s")
        post(ShowFilenameSearchResults(task_id=search_id, query=pattern, results=results))

    return work


def content_search_task(
    search_id: int,
    root: Path,
    query: str,
    post: Callable[[Action], None],
    max_results: int = 1000,
    show_hidden: bool = False,
) -> Callable[[CancellationToken], None]:
    """Registry work that posts ShowContentSearchResults unless cancelled."""

    def work(token: CancellationToken) -> None:
        start = time.monotonic()
        results = search_contents(root, query, token, max_results, show_hidden)
        if results is None:
            logger.debug(f"SEARCH_CANCELLED: content '{query}' in {root}")
            return
        logger.info(f"SEARCH_DONE: content '{query}' in {root}: {len(results)} hit(s) in {time.monotonic() - start:.2f}s")
        post(ShowContentSearchResults(task_id=search_id, query=query, results=results))

    return work
