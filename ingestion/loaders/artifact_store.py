"""
Blob storage for bulk source files and failure reports.
"""

import logging
from pathlib import Path
from typing import Optional, Protocol

from core.config import settings
from core.exceptions import ArtifactStoreError

logger = logging.getLogger(__name__)

LOCATOR_SCHEME = "file://"


class ArtifactStore(Protocol):
    def put(self, key: str, data: bytes) -> str:
        ...

    def get(self, locator: str) -> bytes:
        ...

    def delete(self, locator: str) -> None:
        ...


class LocalArtifactStore:
    """
    Filesystem artifact store rooted at ``ARTIFACT_ROOT``.

    Keys are relative paths (``deaths/raw/deces-2024-01.csv``); locators
    are ``file://`` URIs of the stored file.
    """

    def __init__(self, root: Optional[str] = None):
        self.root = Path(root or settings.ARTIFACT_ROOT).resolve()

    def locator_for(self, key: str) -> str:
        return f"{LOCATOR_SCHEME}{self._path_for_key(key)}"

    def key_for(self, locator: str) -> str:
        return str(self._path_for_locator(locator).relative_to(self.root))

    def put(self, key: str, data: bytes) -> str:
        path = self._path_for_key(key)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(data)
        except OSError as e:
            raise ArtifactStoreError(
                f"Failed to store artifact {key}",
                context={"operation": "put", "key": key},
                original_exception=e
            )
        logger.info(f"Stored artifact {key} ({len(data)} bytes)")
        return f"{LOCATOR_SCHEME}{path}"

    def get(self, locator: str) -> bytes:
        path = self._path_for_locator(locator)
        try:
            return path.read_bytes()
        except OSError as e:
            raise ArtifactStoreError(
                f"Failed to read artifact {locator}",
                context={"operation": "get", "locator": locator},
                original_exception=e
            )

    def delete(self, locator: str) -> None:
        path = self._path_for_locator(locator)
        try:
            path.unlink()
        except FileNotFoundError:
            logger.warning(f"Artifact already gone: {locator}")
        except OSError as e:
            raise ArtifactStoreError(
                f"Failed to delete artifact {locator}",
                context={"operation": "delete", "locator": locator},
                original_exception=e
            )

    def _path_for_key(self, key: str) -> Path:
        path = (self.root / key.lstrip("/")).resolve()
        if self.root not in path.parents:
            raise ArtifactStoreError(
                f"Artifact key escapes the store root: {key}",
                context={"key": key}
            )
        return path

    def _path_for_locator(self, locator: str) -> Path:
        if not locator.startswith(LOCATOR_SCHEME):
            raise ArtifactStoreError(
                f"Unsupported artifact locator: {locator}",
                context={"locator": locator}
            )
        path = Path(locator[len(LOCATOR_SCHEME):]).resolve()
        if self.root not in path.parents:
            raise ArtifactStoreError(
                f"Locator outside the store root: {locator}",
                context={"locator": locator}
            )
        return path
