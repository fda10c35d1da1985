"""
Folder Resolver - Single Responsibility: destination folder per project/group.

Folders live at `/{root}/{project}/{group folder}`. Resolved ids are cached
for the lifetime of the resolver; concurrent misses share one remote call.
"""
import asyncio
import logging
from typing import Dict, Optional, Tuple

from ..errors import AuthRequired, FolderResolutionFailed
from ..models import FolderGroup
from ..protocols import IRemoteStore

logger = logging.getLogger(__name__)

FolderKey = Tuple[str, FolderGroup]


class FolderResolver:
    """Idempotent, cached resolution of remote destination folders."""

    def __init__(self, remote_store: IRemoteStore, root_folder: str = "Production Files"):
        """
        Initialize folder resolver.

        Args:
            remote_store: Store that can create-or-get a folder path
            root_folder: Top-level folder holding every project folder
        """
        self._store = remote_store
        self._root_folder = root_folder
        self._cache: Dict[FolderKey, str] = {}
        self._inflight: Dict[FolderKey, asyncio.Task] = {}

    async def resolve(self, folder_key: str, group: FolderGroup) -> str:
        """
        Get the folder id for a project and folder group.

        Only the requested group's folder is created; sibling groups are
        left alone until something is uploaded to them.

        Raises:
            FolderResolutionFailed: the remote store could not provide the folder
            AuthRequired: the remote store needs a sign-in first
        """
        key = (folder_key, group)
        cached = self._cache.get(key)
        if cached is not None:
            logger.debug(f"Folder found in cache: {self._describe(key)}")
            return cached

        task = self._inflight.get(key)
        if task is None:
            task = asyncio.ensure_future(self._create(key))
            self._inflight[key] = task
            task.add_done_callback(lambda done, key=key: self._finish(key, done))
        else:
            logger.debug(f"Joining in-flight resolution: {self._describe(key)}")

        # A cancelled waiter must not cancel the shared call for the others
        return await asyncio.shield(task)

    def cached(self, folder_key: str, group: FolderGroup) -> Optional[str]:
        return self._cache.get((folder_key, group))

    def forget(self, folder_key: str, group: FolderGroup) -> None:
        self._cache.pop((folder_key, group), None)

    def clear(self) -> None:
        self._cache.clear()

    def path_for(self, folder_key: str, group: FolderGroup) -> list:
        return [self._root_folder, folder_key, group.folder_name]

    async def _create(self, key: FolderKey) -> str:
        segments = self.path_for(*key)
        logger.info(f"Resolving folder: {self._describe(key)}")
        try:
            folder_id = await self._store.get_or_create_folder(segments)
        except AuthRequired:
            raise
        except Exception as exc:
            logger.error(f"Failed to resolve folder {self._describe(key)}: {exc}")
            raise FolderResolutionFailed(
                f"Could not resolve folder /{'/'.join(segments)}: {exc}"
            ) from exc

        if not folder_id:
            raise FolderResolutionFailed(f"Remote store returned no folder for /{'/'.join(segments)}")

        self._cache[key] = folder_id
        logger.debug(f"Folder resolved: {self._describe(key)} -> {folder_id}")
        return folder_id

    def _finish(self, key: FolderKey, task: asyncio.Task) -> None:
        if self._inflight.get(key) is task:
            del self._inflight[key]
        if not task.cancelled():
            # Mark the exception retrieved even if every waiter went away
            task.exception()

    def _describe(self, key: FolderKey) -> str:
        return "/" + "/".join(self.path_for(*key))
