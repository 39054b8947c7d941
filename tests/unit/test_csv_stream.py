"""
Unit tests for the streaming delimited-file parser
"""

import io
from dataclasses import replace

import pytest

from ingestion.extractors.csv_stream import StreamingRecordParser, ParserOptions, ParseStats, compute_age
from ingestion.extractors.insee_extractor import death_registry_options, INSEE_COLUMNS
from tests.conftest import insee_csv

ELDERLY = ["DUPONT*JEAN/", "1", "19400101", "75056", "PARIS", "", "20240110", "75056", "123"]
YOUNG = ["MARTIN*LUC/", "1", "19900101", "75056", "PARIS", "", "20240110", "75056", "124"]
NO_NAME = ["", "1", "19400101", "75056", "PARIS", "", "20240110", "75056", "125"]


class TestComputeAge:
    def test_birthday_already_passed(self):
        assert compute_age("19600101", "20240101") == 64

    def test_birthday_not_yet_reached(self):
        assert compute_age("19600215", "20240101") == 63

    def test_death_on_birthday(self):
        assert compute_age("19600215", "20240215") == 64

    @pytest.mark.parametrize("birth,death", [
        ("1960", "20240101"),
        ("1960010A", "20240101"),
        ("", ""),
    ])
    def test_malformed(self, birth, death):
        assert compute_age(birth, death) is None


class TestStreamingRecordParser:
    """Test row accounting and filtering"""

    def setup_method(self):
        self.parser = StreamingRecordParser()
        self.options = death_registry_options(min_age=60)

    def test_header_skipped_and_rows_accounted(self):
        payload = insee_csv([ELDERLY, YOUNG, ["BAD", "1"], NO_NAME])
        result = self.parser.parse(io.BytesIO(payload), self.options)

        rows = list(result)

        assert [r["actedeces"] for r in rows] == ["123"]
        assert result.stats == ParseStats(
            total_rows=4,
            header_skipped=1,
            wrong_column_count=1,
            missing_required=1,
            filtered_by_domain=1,
            yielded=1,
        )
        assert result.stats.discarded == 3

    def test_file_without_header(self):
        payload = insee_csv([ELDERLY], header=False)
        result = self.parser.parse(io.BytesIO(payload), self.options)

        rows = list(result)

        assert len(rows) == 1
        assert rows[0]["nomprenom"] == "DUPONT*JEAN/"
        assert result.stats.header_skipped == 0

    def test_values_are_stripped(self):
        payload = b'" DUPONT*JEAN/ ";"1";"19400101";"75056";"PARIS";"";"20240110";" 75056 ";"123"\n'
        rows = self.parser.parse_bytes(payload, self.options)

        assert rows[0]["nomprenom"] == "DUPONT*JEAN/"
        assert rows[0]["lieudeces"] == "75056"

    def test_blank_lines_are_ignored(self):
        payload = insee_csv([ELDERLY]) + b"\n\n" + insee_csv([ELDERLY], header=False)
        result = self.parser.parse(io.BytesIO(payload), self.options)

        assert len(list(result)) == 2
        assert result.stats.total_rows == 2

    def test_header_only_checked_on_first_row(self):
        header_again = list(INSEE_COLUMNS)
        payload = insee_csv([ELDERLY, header_again])
        result = self.parser.parse(io.BytesIO(payload), self.options)

        list(result)

        assert result.stats.header_skipped == 1
        # the repeated header fails the age filter as unparseable dates
        assert result.stats.filtered_by_domain == 1

    def test_bom_is_removed(self):
        payload = b"\xef\xbb\xbf" + insee_csv([ELDERLY])
        result = self.parser.parse(io.BytesIO(payload), self.options)

        assert len(list(result)) == 1
        assert result.stats.header_skipped == 1

    def test_rows_are_read_lazily(self):
        payload = insee_csv([ELDERLY] * 5000)
        stream = io.BytesIO(payload)

        rows = iter(self.parser.parse(stream, self.options))
        next(rows)

        assert stream.tell() < len(payload)

    def test_can_only_iterate_once(self):
        result = self.parser.parse(io.BytesIO(insee_csv([ELDERLY])), self.options)
        list(result)

        with pytest.raises(RuntimeError):
            iter(result)

    def test_generic_options_without_filter(self):
        options = ParserOptions(columns=("a", "b"), required=("a",), delimiter=",")
        rows = self.parser.parse_bytes(b"1,2\n,3\n4,5\n", options)

        assert rows == [{"a": "1", "b": "2"}, {"a": "4", "b": "5"}]

    def test_rows_with_extra_fields_are_counted(self):
        payload = insee_csv([ELDERLY, ELDERLY + ["surplus"], ELDERLY])
        result = self.parser.parse(io.BytesIO(payload), self.options)

        rows = list(result)

        assert len(rows) == 2
        assert result.stats.total_rows == 3
        assert result.stats.wrong_column_count == 1

    def test_rows_span_several_chunks(self):
        small_chunks = replace(self.options, chunk_size=2)
        payload = insee_csv([ELDERLY] * 5)
        result = self.parser.parse(io.BytesIO(payload), small_chunks)

        assert len(list(result)) == 5
        assert result.stats.yielded == 5
