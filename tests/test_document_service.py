import io
import zipfile

import pandas as pd
import pytest
from docx import Document

from config.pipeline_config import SUPPORTED_OUTPUT_EXTENSIONS
from services.document_service import DocumentService, docx_to_html, spreadsheet_to_csv
from utils.exceptions import ArchiveError, DownloadError
from fakes import FakeResponse, FakeSession

PDF_BYTES = b"%PDF-1.4\n1 0 obj << >> endobj\ntrailer << >>\n%%EOF\n"


def _docx_bytes():
    document = Document()
    document.add_heading("Technical specification", level=1)
    document.add_paragraph("Laptop, 15 inch, 16 GB RAM")
    table = document.add_table(rows=2, cols=2)
    table.cell(0, 0).text = "Characteristic"
    table.cell(0, 1).text = "Value"
    table.cell(1, 0).text = "RAM"
    table.cell(1, 1).text = "16 GB"
    buffer = io.BytesIO()
    document.save(buffer)
    return buffer.getvalue()


def _zip_bytes(members):
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w") as zf:
        for name, content in members.items():
            zf.writestr(name, content)
    return buffer.getvalue()


def _bundle():
    nested = _zip_bytes({"drawings/drawing.pdf": PDF_BYTES})
    return _zip_bytes({"docs/spec.docx": _docx_bytes(), "attachments.zip": nested})


def _service(tmp_path, content, status_code=200):
    session = FakeSession(get=lambda url, **kwargs: FakeResponse(status_code=status_code, content=content))
    return DocumentService(work_root=tmp_path, session=session, workers=1)


def test_docx_and_nested_pdf_produce_two_files(tmp_path):
    service = _service(tmp_path, _bundle())

    result = service.acquire_and_normalize("0123456789", "https://example.ru/bundle.zip")

    names = sorted(p.name for p in result.normalized_files)
    assert names == ["drawing.pdf", "spec.html"]
    assert all(p.suffix in SUPPORTED_OUTPUT_EXTENSIONS for p in result.normalized_files)
    assert all(p.parent == result.work_dir / "converted" for p in result.normalized_files)
    assert not list((result.work_dir / "original").glob("*.zip"))
    assert not (result.work_dir / "bundle.zip").exists()

    service.cleanup(result.work_dir)
    assert not result.work_dir.exists()


def test_normalizing_twice_yields_same_filenames(tmp_path):
    service = _service(tmp_path, _bundle())

    first = service.acquire_and_normalize("T-1", "https://example.ru/bundle.zip")
    first_names = [p.name for p in first.normalized_files]
    second = service.acquire_and_normalize("T-1", "https://example.ru/bundle.zip")

    assert [p.name for p in second.normalized_files] == first_names
    assert sorted(p.name for p in (second.work_dir / "converted").iterdir()) == sorted(first_names)


def test_cleanup_missing_dir_is_noop(tmp_path):
    service = _service(tmp_path, b"")
    service.cleanup(tmp_path / "does-not-exist")
    service.cleanup(None)


def test_name_filter_keeps_matching_members_only(tmp_path):
    service = _service(tmp_path, _bundle())

    result = service.acquire_and_normalize("T-2", "https://example.ru/bundle.zip", name_filter="SPEC")

    assert [p.name for p in result.normalized_files] == ["spec.html"]


def test_unsupported_and_broken_files_are_skipped(tmp_path):
    bundle = _zip_bytes({
        "notes.txt": "delivery within 30 days",
        "photo.jpg": b"\xff\xd8\xff",
        "broken.docx": b"not a docx",
        "nested.zip": b"not a zip either",
    })
    service = _service(tmp_path, bundle)

    result = service.acquire_and_normalize("T-3", "https://example.ru/bundle.zip")

    assert [p.name for p in result.normalized_files] == ["notes.txt"]
    assert not list((result.work_dir / "original").glob("*.zip"))


def test_empty_bundle_is_valid_empty_result(tmp_path):
    service = _service(tmp_path, _zip_bytes({"readme.md": "nothing to see"}))

    result = service.acquire_and_normalize("T-4", "https://example.ru/bundle.zip")

    assert result.normalized_files == []


def test_download_failure_raises_and_removes_tree(tmp_path):
    service = _service(tmp_path, b"", status_code=404)

    with pytest.raises(DownloadError) as exc_info:
        service.acquire_and_normalize("T-5", "https://example.ru/missing.zip")

    assert exc_info.value.status_code == 404
    assert not service.work_dir_for("T-5").exists()


def test_missing_bundle_url_raises_download_error(tmp_path):
    service = _service(tmp_path, b"")

    with pytest.raises(DownloadError):
        service.acquire_and_normalize("T-6", None)


def test_corrupt_archive_raises_archive_error(tmp_path):
    service = _service(tmp_path, b"this is not a zip file")

    with pytest.raises(ArchiveError):
        service.acquire_and_normalize("T-7", "https://example.ru/bundle.zip")

    assert not service.work_dir_for("T-7").exists()


def test_docx_to_html_keeps_structure(tmp_path):
    source = tmp_path / "spec.docx"
    source.write_bytes(_docx_bytes())

    html = docx_to_html(source, tmp_path / "spec.html").read_text(encoding="utf-8")

    assert "<h1>Technical specification</h1>" in html
    assert "<p>Laptop, 15 inch, 16 GB RAM</p>" in html
    assert "<table>" in html and "<td>16 GB</td>" in html


def test_spreadsheet_sheet_naming(tmp_path):
    multi = tmp_path / "prices.xlsx"
    with pd.ExcelWriter(multi, engine="openpyxl") as writer:
        pd.DataFrame({"item": ["laptop"], "qty": [3]}).to_excel(writer, sheet_name="Items", index=False)
        pd.DataFrame({"term": ["delivery"], "days": [30]}).to_excel(writer, sheet_name="Terms", index=False)
    single = tmp_path / "one.xlsx"
    with pd.ExcelWriter(single, engine="openpyxl") as writer:
        pd.DataFrame({"item": ["monitor"]}).to_excel(writer, sheet_name="Sheet1", index=False)

    out_dir = tmp_path / "converted"
    out_dir.mkdir()

    multi_names = sorted(p.name for p in spreadsheet_to_csv(multi, out_dir))
    single_names = [p.name for p in spreadsheet_to_csv(single, out_dir)]

    assert multi_names == ["prices_Items.csv", "prices_Terms.csv"]
    assert single_names == ["one.csv"]
    assert "laptop" in (out_dir / "prices_Items.csv").read_text(encoding="utf-8")


def test_same_basename_in_different_folders_keeps_both(tmp_path):
    bundle = _zip_bytes({"lot1/notice.pdf": PDF_BYTES, "lot2/notice.pdf": PDF_BYTES + b"%lot2\n"})
    service = _service(tmp_path, bundle)

    result = service.acquire_and_normalize("T-8", "https://example.ru/bundle.zip")

    assert [p.name for p in result.normalized_files] == ["notice.pdf", "notice_1.pdf"]
    assert (result.work_dir / "converted" / "notice_1.pdf").read_bytes().endswith(b"%lot2\n")
