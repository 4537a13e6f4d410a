from __future__ import annotations

import csv
import io

import pytest

from recipe_import.errors import FileValidationError
from recipe_import.formats.csv_adapter import CsvImportAdapter


@pytest.fixture()
def adapter() -> CsvImportAdapter:
    return CsvImportAdapter()


class TestValidateFile:
    def test_valid_header(self, adapter, valid_csv):
        outcome = adapter.validate_file(valid_csv)
        assert outcome.valid is True
        assert outcome.error is None

    def test_header_only_is_valid(self, adapter):
        assert adapter.validate_file(b"name,ingredients,instructions\n").valid is True

    def test_missing_columns_listed_in_order(self, adapter):
        outcome = adapter.validate_file(b"name,description\nA,B\n")
        assert outcome.valid is False
        assert outcome.error == "Missing required columns: ingredients, instructions"

    def test_empty_input_invalid(self, adapter):
        outcome = adapter.validate_file(b"")
        assert outcome.valid is False
        assert outcome.error == "Invalid CSV format"

    def test_bom_and_padded_header(self, adapter):
        data = "\ufeff name , ingredients ,instructions\n".encode()
        assert adapter.validate_file(data).valid is True


class TestParseFile:
    def test_rows_are_trimmed_text(self, adapter):
        data = b'name,ingredients,instructions,batchNumber\n Soup ,"1 l water\n2 tsp salt", Boil ,007\n'
        rows = adapter.parse_file(data)
        assert rows == [
            {
                "name": "Soup",
                "ingredients": "1 l water\n2 tsp salt",
                "instructions": "Boil",
                "batchNumber": "007",
            }
        ]

    def test_na_like_strings_are_kept(self, adapter):
        rows = adapter.parse_file(b"name,ingredients,instructions\nNA,None,null\n")
        assert rows[0] == {"name": "NA", "ingredients": "None", "instructions": "null"}

    def test_blank_lines_skipped_and_short_rows_padded(self, adapter):
        rows = adapter.parse_file(b"name,ingredients,instructions\n\nA,1 egg\n\n")
        assert rows == [{"name": "A", "ingredients": "1 egg", "instructions": ""}]

    def test_empty_input_raises(self, adapter):
        with pytest.raises(FileValidationError, match="Failed to parse CSV file"):
            adapter.parse_file(b"")

    def test_parse_file_leaves_out_unsplittable_records(self, adapter):
        data = b"name,ingredients,instructions\nA,1 egg,Fry\nB,1 egg,Fry,extra\n"
        assert adapter.parse_file(data) == [{"name": "A", "ingredients": "1 egg", "instructions": "Fry"}]

    def test_parse_records_numbered_by_position(self, adapter):
        data = (
            b"name,ingredients,instructions\n"
            b'A,"1 cup flour\n2 eggs",Mix\n'
            b"B,1 egg, 2 eggs,Fry\n"
            b"C,1 egg,Fry\n"
        )
        records = adapter.parse_records(data)
        assert [r.line_number for r in records] == [2, 3, 4]
        assert records[1].parse_error == "Failed to parse line: expected 3 fields, saw 4"
        assert records[2].fields["name"] == "C"


class TestMalformedRecords:
    """Records the reader cannot use are reported in place, never reshaped."""

    def test_extra_fields_are_a_parse_error(self, adapter):
        data = b"name,ingredients,instructions\nStew,1 cup flour, 2 tbsp sugar,Mix\nCake,egg,Bake\n"
        rows = list(adapter.iter_rows(io.BytesIO(data)))
        assert rows[0].line_number == 2
        assert rows[0].fields == {}
        assert rows[0].parse_error == "Failed to parse line: expected 3 fields, saw 4"
        assert rows[1].fields["name"] == "Cake"

    def test_whitespace_only_line_skipped(self, adapter):
        data = b"name,ingredients,instructions\nSoup,salt,Boil\n   \nCake,egg,Bake\n"
        rows = list(adapter.iter_rows(io.BytesIO(data)))
        assert [r.line_number for r in rows] == [2, 4]
        assert [r.fields["name"] for r in rows] == ["Soup", "Cake"]

    def test_invalid_utf8_is_a_parse_error(self, adapter):
        data = b"name,ingredients,instructions\nCak\xff,egg,Bake\nSoup,salt,Boil\n"
        rows = list(adapter.iter_rows(io.BytesIO(data)))
        assert rows[0].parse_error == "Failed to parse line: invalid UTF-8 byte sequence"
        assert rows[1].fields["name"] == "Soup"

    def test_invalid_utf8_does_not_fail_validation(self, adapter):
        data = b"name,ingredients,instructions\nCak\xff,egg,Bake\n"
        assert adapter.validate_file(data).valid is True


class TestIterRows:
    def test_line_numbers_follow_physical_lines(self, adapter):
        data = (
            b"name,ingredients,instructions\n"
            b'A,"1 cup flour\n2 eggs",Mix\n'
            b"\n"
            b"B,1 egg,Fry\n"
        )
        rows = list(adapter.iter_rows(io.BytesIO(data)))
        assert [r.line_number for r in rows] == [2, 5]
        assert rows[0].fields["ingredients"] == "1 cup flour\n2 eggs"
        assert rows[1].fields == {"name": "B", "ingredients": "1 egg", "instructions": "Fry"}
        assert all(r.parse_error is None for r in rows)

    def test_comma_only_row_is_yielded(self, adapter):
        rows = list(adapter.iter_rows(io.BytesIO(b"name,ingredients,instructions\n,,\n")))
        assert len(rows) == 1
        assert rows[0].fields == {"name": "", "ingredients": "", "instructions": ""}

    def test_text_stream_accepted(self, adapter):
        rows = list(adapter.iter_rows(io.StringIO("name,ingredients,instructions\nA,1 egg,Fry\n")))
        assert rows[0].line_number == 2

    def test_caller_stream_not_closed(self, adapter, valid_csv):
        stream = io.BytesIO(valid_csv)
        list(adapter.iter_rows(stream))
        assert not stream.closed

    def test_bad_header_raises(self, adapter):
        with pytest.raises(FileValidationError, match="Missing required columns: instructions"):
            list(adapter.iter_rows(io.BytesIO(b"name,ingredients\nA,B\n")))

    def test_empty_stream_raises(self, adapter):
        with pytest.raises(FileValidationError, match="Invalid CSV format"):
            list(adapter.iter_rows(io.BytesIO(b"\n\n")))

    def test_unparseable_line_becomes_parse_error(self, adapter):
        data = b"name,ingredients,instructions\nA," + b"x" * 50 + b",Mix\nB,1 egg,Fry\n"
        old_limit = csv.field_size_limit(20)
        try:
            rows = list(adapter.iter_rows(io.BytesIO(data)))
        finally:
            csv.field_size_limit(old_limit)
        assert rows[0].line_number == 2
        assert rows[0].parse_error is not None
        assert rows[0].parse_error.startswith("Failed to parse line:")
        assert rows[1].line_number == 3
        assert rows[1].fields["name"] == "B"


def test_format_name_and_repr(adapter):
    assert adapter.get_format_name() == "CSV"
    assert repr(adapter) == "<CsvImportAdapter format=CSV>"
