"""Recursive listing engine for polystore.

Turns a backend's one-level :meth:`~polystore.storage.backend.StorageBackend.list_level`
primitive into a full-tree traversal:

- backends declaring ``can_list_hierarchy`` are called once and return the
  whole subtree themselves, unless ``options.recursion_mode`` is LOCAL;
- all other backends are recursed locally, one concurrent ``list_level``
  call per discovered folder, bounded by ``options.num_recursion_threads``.

Results are filtered (file prefix, then browse filter) and capped at
``options.max_results``. A folder that vanishes mid-traversal contributes
nothing; any other backend failure propagates to the caller.
"""

import asyncio
import logging

from polystore import metrics, paths
from polystore.errors import NotFoundError
from polystore.models import Entry, ListOptions, RecursionMode
from polystore.storage.backend import StorageBackend

logger = logging.getLogger(__name__)


def _is_full(result: list[Entry], options: ListOptions) -> bool:
    return options.max_results is not None and len(result) >= options.max_results


class _Traversal:
    """State for one :func:`list_entries` call.

    The accumulator is only touched synchronously between awaits, so a
    level's entries are always merged as one unit.
    """

    def __init__(self, backend: StorageBackend, options: ListOptions) -> None:
        self.backend = backend
        self.options = options
        self.result: list[Entry] = []
        remote = backend.can_list_hierarchy and options.recursion_mode is RecursionMode.REMOTE
        self.local_recursion = options.recurse and not remote
        # Hierarchical backends only return one level when recurse is off.
        self._level_options = options.clone(recurse=False) if self.local_recursion else options
        self._semaphore = asyncio.Semaphore(options.num_recursion_threads)
        self._visited: set[str] = {options.folder_path}
        self._capability = "hierarchy" if remote else "local"

    async def _list_level(self, path: str) -> list[Entry]:
        if metrics.list_calls_total is not None:
            metrics.list_calls_total.labels(capability=self._capability).inc()
        try:
            return await self.backend.list_level(path, self._level_options)
        except (NotFoundError, FileNotFoundError):
            logger.debug("Folder not found while listing, skipping", extra={"path": path})
            return []

    async def step(self, path: str) -> None:
        """List one folder, merge it, then fan out into its sub-folders."""
        async with self._semaphore:
            if _is_full(self.result, self.options):
                return
            chunk = await self._list_level(path)

        self.result.extend(e for e in chunk if self.options.accepts(e))

        if not self.local_recursion or _is_full(self.result, self.options):
            return

        children = []
        for entry in chunk:
            if not entry.is_folder or entry.path in self._visited:
                continue
            if not paths.is_under(entry.path, path):
                continue
            self._visited.add(entry.path)
            children.append(entry.path)

        if not children:
            return
        tasks = [asyncio.ensure_future(self.step(child)) for child in children]
        try:
            await asyncio.gather(*tasks)
        except BaseException:
            for task in tasks:
                task.cancel()
            raise


async def list_entries(
    backend: StorageBackend,
    options: ListOptions | None = None,
    *,
    path: str | None = None,
) -> list[Entry]:
    """List storage entries, recursing as the options and backend require.

    Args:
        backend: The storage backend to traverse.
        options: Traversal options (defaults to a non-recursive root listing).
        path: Start folder, overriding ``options.folder_path`` without
            modifying the caller's options.

    Returns:
        The filtered entries, at most ``options.max_results`` of them. The
        start folder's entries come first in backend order; deeper levels
        follow in completion order.

    Raises:
        Exception: Any backend error other than a missing folder.
    """
    if options is None:
        options = ListOptions()
    if path is not None:
        options = options.clone(folder_path=path)

    if options.max_results == 0:
        return []

    traversal = _Traversal(backend, options)
    await traversal.step(options.folder_path)

    result = traversal.result
    if options.max_results is not None:
        del result[options.max_results:]

    if metrics.entries_listed_total is not None:
        metrics.entries_listed_total.inc(len(result))

    logger.debug(
        "Listed %d entries (recurse=%s, local_recursion=%s)",
        len(result),
        options.recurse,
        traversal.local_recursion,
        extra={"path": options.folder_path},
    )
    return result
