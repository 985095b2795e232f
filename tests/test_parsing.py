import io

import pytest
from openpyxl import Workbook

from contact_import.errors import (
    CorruptFormat,
    EmptyFile,
    FileValidationError,
    MissingRequiredColumns,
    SizeExceeded,
    UnsupportedFormat,
)
from contact_import.extraction import check_image_upload, check_import_upload
from contact_import.models import Source
from contact_import.parsing import (
    detect_delimiter,
    parse,
    parse_delimited,
    resolve_format,
    split_delimited_line,
)


def _xlsx_bytes(rows):
    workbook = Workbook()
    sheet = workbook.active
    for row in rows:
        sheet.append(row)
    buffer = io.BytesIO()
    workbook.save(buffer)
    return buffer.getvalue()


def test_detect_delimiter_prefers_semicolon_and_tab_only_when_strictly_more():
    assert detect_delimiter("Name;Phone;Email") == ";"
    assert detect_delimiter("Name\tPhone\tEmail") == "\t"
    assert detect_delimiter("Name,Phone;Email") == ","
    assert detect_delimiter("Name") == ","
    # delimiters inside quotes are not counted
    assert detect_delimiter('"Doe; Jane",Phone') == ","


def test_split_delimited_line_handles_quotes():
    assert split_delimited_line('"Doe, Jane", 0812 ,"say ""hi"""', ",") == [
        "Doe, Jane",
        "0812",
        'say "hi"',
    ]
    assert split_delimited_line("a;;b", ";") == ["a", "", "b"]


def test_parse_semicolon_csv():
    text = "Nama;HP;Email\nBudi;08123456789;budi@example.com\nSiti;0857111;\n"
    candidates = parse_delimited(text)
    assert [c.full_name for c in candidates] == ["Budi", "Siti"]
    assert candidates[0].phone == "08123456789"
    assert candidates[1].email == ""
    assert all(c.source is Source.IMPORT for c in candidates)


def test_parse_drops_incomplete_rows():
    text = "Name,Phone\nJane,0812\n,0813\nNo Phone,\n"
    candidates = parse_delimited(text)
    assert [c.full_name for c in candidates] == ["Jane"]


def test_parse_delimited_errors():
    with pytest.raises(EmptyFile):
        parse_delimited("Name,Phone\n")
    with pytest.raises(MissingRequiredColumns):
        parse_delimited("Name,Email\nJane,jane@example.com\n")
    with pytest.raises(EmptyFile):
        parse_delimited("Name,Phone\n,\n")


def test_parse_dispatches_on_name_and_enforces_size():
    data = "\ufeffName,Phone\nJane Doe,081234\n".encode("utf-8")
    candidates = parse(data, "contacts.CSV")
    assert candidates[0].full_name == "Jane Doe"
    assert candidates[0].phone == "081234"
    assert parse(data, "text/csv")[0].full_name == "Jane Doe"
    with pytest.raises(UnsupportedFormat):
        parse(data, "contacts.json")
    with pytest.raises(SizeExceeded):
        parse(data, "contacts.csv", max_bytes=10)
    xlsx_mime = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"
    assert resolve_format(xlsx_mime) == "xlsx"


def test_parse_marks_undecodable_bytes_instead_of_dropping_them():
    data = b"Name,Phone\nJos\xe9 Rizal,0812\n"
    candidates = parse(data, "contacts.csv")
    assert candidates[0].full_name == "Jos\ufffd Rizal"


def test_parse_spreadsheet():
    data = _xlsx_bytes(
        [
            ["Full_Name", "Phone", "Company", "Notes"],
            ["Jane Doe", "081234567", "Acme", "x"],
            ["No Phone", None, "Acme", ""],
        ]
    )
    candidates = parse(data, "people.xlsx")
    assert len(candidates) == 1
    assert candidates[0].full_name == "Jane Doe"
    assert candidates[0].company == "Acme"
    assert candidates[0].source is Source.IMPORT


def test_parse_spreadsheet_errors():
    with pytest.raises(MissingRequiredColumns):
        parse(_xlsx_bytes([["Name", "Email"], ["Jane", "jane@example.com"]]), "a.xlsx")
    with pytest.raises(EmptyFile):
        parse(_xlsx_bytes([["Name", "Phone"]]), "a.xlsx")
    with pytest.raises(CorruptFormat):
        parse(b"definitely not a workbook", "a.xlsx")
    with pytest.raises(CorruptFormat):
        parse(b"\xd0\xcf\x11\xe0\xa1\xb1\x1a\xe1" + b"\x00" * 64, "a.xlsx")


def test_upload_prechecks():
    assert check_import_upload(b"x", "Contacts.XLSX") == "xlsx"
    with pytest.raises(FileValidationError):
        check_import_upload(b"x", "contacts.txt")
    with pytest.raises(FileValidationError):
        check_import_upload(b"xx", "contacts.csv", max_bytes=1)
    check_image_upload(b"x", "image/png")
    with pytest.raises(FileValidationError):
        check_image_upload(b"x", "image/gif")


if __name__ == "__main__":
    pytest.main(["-q"])
