"""
Streaming parser for bulk delimited files.

The file is read in pandas chunks and rows are filtered one at a time;
the payload is never buffered whole. Every discarded row is counted,
none stops the stream.
"""

import io
from dataclasses import dataclass, replace
from typing import Dict, List, Optional, Callable, Iterator, Tuple, BinaryIO

import pandas as pd

RowFilter = Callable[[Dict[str, str]], Optional[str]]


def _cell(value) -> Optional[str]:
    return value.strip() if isinstance(value, str) else None


@dataclass(frozen=True)
class ParserOptions:
    """
    Attributes:
        columns: Expected column names, in file order
        required: Columns that must be non-empty
        header_signature: Substring identifying a header in the first cell
        row_filter: Domain filter returning a discard reason, or None to keep
    """

    columns: Tuple[str, ...]
    required: Tuple[str, ...] = ()
    header_signature: Optional[str] = None
    delimiter: str = ";"
    quotechar: str = '"'
    encoding: str = "utf-8-sig"
    row_filter: Optional[RowFilter] = None
    chunk_size: int = 500


@dataclass(frozen=True)
class ParseStats:
    total_rows: int = 0
    header_skipped: int = 0
    wrong_column_count: int = 0
    missing_required: int = 0
    filtered_by_domain: int = 0
    yielded: int = 0

    @property
    def discarded(self) -> int:
        return self.wrong_column_count + self.missing_required + self.filtered_by_domain

    def incremented(self, name: str) -> "ParseStats":
        return replace(self, **{name: getattr(self, name) + 1})


class ParseResult:
    """
    Lazy sequence of parsed rows plus the stats gathered so far.

    ``stats`` is final once iteration is exhausted. Can be iterated once.
    """

    def __init__(self, stream: BinaryIO, options: ParserOptions):
        self._stream = stream
        self._options = options
        self.stats = ParseStats()
        self._started = False

    def __iter__(self) -> Iterator[Dict[str, str]]:
        if self._started:
            raise RuntimeError("ParseResult can only be iterated once")
        self._started = True
        return self._rows()

    def _rows(self) -> Iterator[Dict[str, str]]:
        opts = self._options
        columns = list(opts.columns)

        def too_many_fields(cells: List[str]) -> None:
            self.stats = self.stats.incremented("total_rows").incremented("wrong_column_count")
            return None

        try:
            reader = pd.read_csv(
                self._stream,
                sep=opts.delimiter,
                quotechar=opts.quotechar,
                header=None,
                names=columns,
                converters={name: _cell for name in columns},
                keep_default_na=False,
                skip_blank_lines=True,
                encoding=opts.encoding,
                encoding_errors="replace",
                compression=None,
                engine="python",
                on_bad_lines=too_many_fields,
                chunksize=opts.chunk_size,
            )
        except pd.errors.EmptyDataError:
            return
        first = True

        try:
            for chunk in reader:
                for cells in chunk.itertuples(index=False, name=None):
                    if all(not value for value in cells):
                        continue

                    if first:
                        first = False
                        header_cell = cells[0] if isinstance(cells[0], str) else ""
                        if opts.header_signature and opts.header_signature in header_cell.lower():
                            self.stats = self.stats.incremented("header_skipped")
                            continue

                    self.stats = self.stats.incremented("total_rows")

                    # short rows come back padded with missing values
                    if any(not isinstance(value, str) for value in cells):
                        self.stats = self.stats.incremented("wrong_column_count")
                        continue

                    row = dict(zip(columns, cells))

                    if any(not row[name] for name in opts.required):
                        self.stats = self.stats.incremented("missing_required")
                        continue

                    if opts.row_filter is not None and opts.row_filter(row) is not None:
                        self.stats = self.stats.incremented("filtered_by_domain")
                        continue

                    self.stats = self.stats.incremented("yielded")
                    yield row
        finally:
            if not self._stream.closed:
                reader.close()


class StreamingRecordParser:
    """Parses a binary stream into filtered row dictionaries."""

    def parse(self, stream: BinaryIO, options: ParserOptions) -> ParseResult:
        return ParseResult(stream, options)

    def parse_bytes(self, payload: bytes, options: ParserOptions) -> List[Dict[str, str]]:
        """Convenience for small payloads; returns a fully materialized list."""
        return list(self.parse(io.BytesIO(payload), options))


def compute_age(birth: str, death: str) -> Optional[int]:
    """
    Whole years between two YYYYMMDD strings.

    One year is taken off when the death month/day precedes the birth
    month/day. Returns None for malformed input.
    """
    if len(birth) != 8 or len(death) != 8 or not birth.isdigit() or not death.isdigit():
        return None

    birth_year, birth_md = int(birth[:4]), (int(birth[4:6]), int(birth[6:8]))
    death_year, death_md = int(death[:4]), (int(death[4:6]), int(death[6:8]))

    age = death_year - birth_year
    if death_md < birth_md:
        age -= 1
    return age
