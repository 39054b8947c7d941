"""
INSEE death registry extractor.

Monthly files are published as ZIP archives holding one delimited file
(``.csv`` or ``.txt``) with nine columns and no guaranteed header.
"""

import io
import logging
import zipfile
from contextlib import contextmanager
from typing import Dict, Optional, Iterator, BinaryIO

from core.config import settings
from core.exceptions import SourceFileUnavailable, FetchError
from ingestion.extractors.csv_stream import ParserOptions, compute_age
from ingestion.extractors.fetcher import RateLimitedFetcher
from ingestion.extractors.link_discovery import FileMetadata

logger = logging.getLogger(__name__)

INSEE_COLUMNS = (
    "nomprenom",
    "sexe",
    "datenaiss",
    "lieunaiss",
    "commnaiss",
    "paysnaiss",
    "datedeces",
    "lieudeces",
    "actedeces",
)

INSEE_REQUIRED = ("nomprenom", "datenaiss", "datedeces", "lieudeces")


def death_registry_options(min_age: Optional[int] = None) -> ParserOptions:
    """Parser options for INSEE files, keeping only deaths at ``min_age`` or older."""
    threshold = settings.DEATH_REGISTRY_MIN_AGE if min_age is None else min_age

    def old_enough(row: Dict[str, str]) -> Optional[str]:
        age = compute_age(row["datenaiss"], row["datedeces"])
        if age is None:
            return "unparseable dates"
        if age < threshold:
            return f"age {age} below {threshold}"
        return None

    return ParserOptions(
        columns=INSEE_COLUMNS,
        required=INSEE_REQUIRED,
        header_signature="nomprenom",
        delimiter=";",
        quotechar='"',
        row_filter=old_enough,
    )


def raw_artifact_key(file: FileMetadata) -> str:
    return f"deaths/raw/deces-{file.year:04d}-{file.month:02d}.csv"


class InseeDeathFileExtractor:
    """Downloads a monthly archive and exposes its data member as a stream."""

    def __init__(self, fetcher: RateLimitedFetcher):
        self.fetcher = fetcher

    async def download(self, file: FileMetadata) -> bytes:
        try:
            response = await self.fetcher.fetch(file.url)
        except FetchError as e:
            raise SourceFileUnavailable(
                f"Download failed for {file.file_name}",
                context={"url": file.url},
                original_exception=e
            )
        if response.status_code == 404:
            raise SourceFileUnavailable(
                f"Archive not found: {file.file_name}",
                context={"url": file.url}
            )
        return response.content

    @staticmethod
    @contextmanager
    def open_member(archive: bytes) -> Iterator[BinaryIO]:
        """Open the first ``.csv`` or ``.txt`` member of a ZIP archive for streaming reads."""
        try:
            zf = zipfile.ZipFile(io.BytesIO(archive))
        except zipfile.BadZipFile as e:
            raise SourceFileUnavailable("Downloaded file is not a ZIP archive", original_exception=e)

        with zf:
            members = [
                info for info in zf.infolist()
                if not info.is_dir() and info.filename.lower().endswith((".csv", ".txt"))
            ]
            if not members:
                raise SourceFileUnavailable(
                    "No CSV or TXT member in archive",
                    context={"members": [i.filename for i in zf.infolist()]}
                )
            with zf.open(members[0]) as stream:
                yield stream

    def read_member(self, archive: bytes) -> bytes:
        with self.open_member(archive) as stream:
            return stream.read()
