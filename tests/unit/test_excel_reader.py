from __future__ import annotations

from pathlib import Path
from unittest.mock import MagicMock, patch

import pandas as pd
import pytest

from clientdesk.excel.reader import parse_spreadsheet
from clientdesk.excel.upload import upload_file


def test_parse_csv_keeps_strings_and_drops_blank_rows(tmp_path: Path):
    f = tmp_path / "clients.csv"
    f.write_text(" Name ,Phone,Zip\nDana,0501234567,00123\n,,\nAvi,,NA\n", encoding="utf-8")
    result = parse_spreadsheet(f.as_uri())
    assert result.ok
    assert result.headers == ["Name", "Phone", "Zip"]
    assert result.rows == [
        {"Name": "Dana", "Phone": "0501234567", "Zip": "00123"},
        {"Name": "Avi", "Phone": "", "Zip": "NA"},
    ]


def test_parse_csv_windows_1255(tmp_path: Path):
    f = tmp_path / "hebrew.csv"
    f.write_bytes("שם,טלפון\nדנה,050\n".encode("cp1255"))
    result = parse_spreadsheet(str(f))
    assert result.ok
    assert result.headers == ["שם", "טלפון"]
    assert result.rows[0]["שם"] == "דנה"


def test_parse_csv_with_bom(tmp_path: Path):
    f = tmp_path / "bom.csv"
    f.write_bytes("Name\nDana\n".encode("utf-8-sig"))
    result = parse_spreadsheet(str(f))
    assert result.headers == ["Name"]


def test_parse_excel_first_sheet_only(tmp_path: Path):
    f = tmp_path / "clients.xlsx"
    with pd.ExcelWriter(f, engine="openpyxl") as writer:
        pd.DataFrame({"Name": ["Dana", "Avi"], "Phone": ["050", "052"]}).to_excel(
            writer, sheet_name="Clients", index=False
        )
        pd.DataFrame({"Other": ["x"]}).to_excel(writer, sheet_name="Second", index=False)
    result = parse_spreadsheet(f.as_uri())
    assert result.ok
    assert result.headers == ["Name", "Phone"]
    assert [r["Name"] for r in result.rows] == ["Dana", "Avi"]


def test_parse_missing_file_returns_error_status(tmp_path: Path):
    result = parse_spreadsheet((tmp_path / "missing.csv").as_uri())
    assert result.status == "error"
    assert not result.ok
    assert result.error


def test_parse_corrupt_excel_returns_error_status(tmp_path: Path):
    f = tmp_path / "broken.xlsx"
    f.write_bytes(b"not a zip file")
    result = parse_spreadsheet(str(f))
    assert result.status == "error"


def test_parse_remote_file_uses_requests():
    response = MagicMock()
    response.content = b"Name,Email\nDana,dana@example.com\n"
    response.raise_for_status.return_value = None
    with patch("clientdesk.excel.reader.requests.get", return_value=response) as get:
        result = parse_spreadsheet("https://files.example.com/uploads/clients.csv")
    get.assert_called_once_with("https://files.example.com/uploads/clients.csv", timeout=30)
    assert result.rows == [{"Name": "Dana", "Email": "dana@example.com"}]


def test_upload_copies_into_uploads_dir(tmp_path: Path):
    src = tmp_path / "clients.csv"
    src.write_text("Name\nDana\n", encoding="utf-8")
    uploaded = upload_file(src, tmp_path / "uploads")
    assert uploaded["file_url"].startswith("file://")
    copies = list((tmp_path / "uploads").iterdir())
    assert len(copies) == 1
    assert copies[0].name.endswith("-clients.csv")
    assert copies[0].read_text(encoding="utf-8") == "Name\nDana\n"


def test_upload_missing_file(tmp_path: Path):
    with pytest.raises(FileNotFoundError):
        upload_file(tmp_path / "nope.csv", tmp_path / "uploads")
