"""
Document Acquirer & Normalizer

Downloads a tender's document bundle, unpacks it (nested archives included)
into WORK_ROOT/{reg_number}/original and converts every member into a
format the reasoning service can read under WORK_ROOT/{reg_number}/converted.
"""
import html
import re
import shutil
import subprocess
import zipfile
from concurrent.futures import ThreadPoolExecutor, as_completed
from pathlib import Path
from typing import List, Optional

import pandas as pd
import requests
import urllib3
from docx import Document as DocxDocument
from docx.oxml.ns import qn
from docx.table import Table
from docx.text.paragraph import Paragraph
from pydantic import BaseModel

from config.pipeline_config import (
    ARCHIVE_EXTENSIONS,
    DOC_CONVERTER_TIMEOUT_SECONDS,
    DOWNLOAD_TIMEOUT_SECONDS,
    DOWNLOAD_VERIFY_SSL,
    LEGACY_WORD_EXTENSIONS,
    MAX_ARCHIVE_DEPTH,
    NORMALIZE_WORKERS,
    PASSTHROUGH_EXTENSIONS,
    SPREADSHEET_EXTENSIONS,
    USER_AGENT,
    WORD_EXTENSIONS,
    WORK_ROOT,
)
from utils.exceptions import ArchiveError, ConversionError, DownloadError
from utils.helpers import CancellationToken, log_execution_time, safe_name
from utils.logging_config import get_logger

logger = get_logger(__name__, "pipeline")

if not DOWNLOAD_VERIFY_SSL:
    urllib3.disable_warnings(urllib3.exceptions.InsecureRequestWarning)

_HEADING_RE = re.compile(r"^heading\s*(\d)", re.IGNORECASE)


class NormalizationResult(BaseModel):
    normalized_files: List[Path]
    work_dir: Path


def _free_path(path: Path) -> Path:
    """path itself, or <stem>_<n><suffix> with the first n not yet taken."""
    candidate = path
    counter = 1
    while candidate.exists():
        candidate = path.with_name(f"{path.stem}_{counter}{path.suffix}")
        counter += 1
    return candidate


def _member_name(info: zipfile.ZipInfo) -> str:
    """Basename of an archive member, fixing cp866 names from Windows archivers."""
    name = info.filename
    if not info.flag_bits & 0x800:
        try:
            name = name.encode("cp437").decode("cp866")
        except (UnicodeEncodeError, UnicodeDecodeError):
            pass
    return Path(name.replace("\\", "/")).name


# ==================== CONVERTERS ====================

def _paragraph_html(paragraph: Paragraph) -> str:
    parts = []
    for run in paragraph.runs:
        if run._element.findall(".//" + qn("w:drawing")) or run._element.findall(".//" + qn("w:pict")):
            parts.append("[image]")
        if run.text:
            parts.append(html.escape(run.text))
    text = "".join(parts).strip()
    if not text:
        return ""

    style_name = paragraph.style.name if paragraph.style is not None else ""
    if style_name == "Title":
        return f"<h1>{text}</h1>"
    match = _HEADING_RE.match(style_name or "")
    if match:
        level = min(max(int(match.group(1)), 1), 6)
        return f"<h{level}>{text}</h{level}>"
    return f"<p>{text}</p>"


def _table_html(table: Table) -> str:
    rows = []
    for row in table.rows:
        cells = "".join(f"<td>{html.escape(cell.text.strip())}</td>" for cell in row.cells)
        rows.append(f"<tr>{cells}</tr>")
    return "<table>" + "".join(rows) + "</table>"


def docx_to_html(source: Path, destination: Path) -> Path:
    """Render a .docx as a simple HTML article, keeping body order."""
    document = DocxDocument(str(source))
    blocks = []
    for child in document.element.body.iterchildren():
        if child.tag == qn("w:p"):
            block = _paragraph_html(Paragraph(child, document))
        elif child.tag == qn("w:tbl"):
            block = _table_html(Table(child, document))
        else:
            continue
        if block:
            blocks.append(block)

    title = html.escape(source.stem)
    destination.write_text(
        f'<html><head><meta charset="utf-8"><title>{title}</title></head>'
        f"<body><article>{''.join(blocks)}</article></body></html>",
        encoding="utf-8",
    )
    return destination


def doc_to_text(source: Path, destination: Path, timeout: int = DOC_CONVERTER_TIMEOUT_SECONDS) -> Path:
    """Plain text from a legacy .doc via antiword. Layout is lost."""
    try:
        result = subprocess.run(
            ["antiword", "-m", "UTF-8.txt", str(source)],
            capture_output=True, timeout=timeout,
        )
    except FileNotFoundError:
        raise ConversionError(source, "antiword is not installed")
    except subprocess.TimeoutExpired:
        raise ConversionError(source, f"antiword timed out after {timeout}s")

    text = result.stdout.decode("utf-8", errors="replace").strip()
    if result.returncode != 0 or not text:
        stderr = result.stderr.decode("utf-8", errors="replace").strip()
        raise ConversionError(source, f"antiword failed: {stderr or 'no text'}")

    destination.write_text(text, encoding="utf-8")
    return destination


def spreadsheet_to_csv(source: Path, converted_dir: Path) -> List[Path]:
    """One CSV per sheet: <stem>.csv for a single sheet, <stem>_<sheet>.csv otherwise."""
    engine = "xlrd" if source.suffix.lower() == ".xls" else "openpyxl"
    outputs = []
    with pd.ExcelFile(source, engine=engine) as xls:
        single = len(xls.sheet_names) == 1
        for sheet in xls.sheet_names:
            df = pd.read_excel(xls, sheet_name=sheet, header=None)
            df = df.dropna(how="all").dropna(axis=1, how="all")
            if df.empty:
                logger.info(f"Skipping empty sheet '{sheet}' in {source.name}")
                continue
            name = f"{source.stem}.csv" if single else f"{source.stem}_{safe_name(str(sheet))}.csv"
            destination = converted_dir / name
            df.to_csv(destination, index=False, header=False)
            outputs.append(destination)
    return outputs


def convert_file(source: Path, converted_dir: Path) -> List[Path]:
    """
    Convert one original file into zero or more normalized files.

    Raises ConversionError when a supported file cannot be converted;
    unsupported extensions return [].
    """
    ext = source.suffix.lower()
    try:
        if ext in WORD_EXTENSIONS:
            return [docx_to_html(source, converted_dir / f"{source.stem}.html")]
        if ext in LEGACY_WORD_EXTENSIONS:
            return [doc_to_text(source, converted_dir / f"{source.stem}.txt")]
        if ext in SPREADSHEET_EXTENSIONS:
            return spreadsheet_to_csv(source, converted_dir)
        if ext in PASSTHROUGH_EXTENSIONS:
            destination = converted_dir / source.name
            shutil.copy2(source, destination)
            return [destination]
    except ConversionError:
        raise
    except Exception as e:
        raise ConversionError(source, str(e)) from e

    logger.info(f"Skipping unsupported file type: {source.name}")
    return []


# ==================== SERVICE ====================

class DocumentService:
    def __init__(self, work_root=WORK_ROOT, session: requests.Session | None = None,
                 workers: int = NORMALIZE_WORKERS, max_archive_depth: int = MAX_ARCHIVE_DEPTH):
        self.work_root = Path(work_root)
        self.session = session or requests.Session()
        self.workers = max(1, workers)
        self.max_archive_depth = max_archive_depth

    def work_dir_for(self, key: str) -> Path:
        return self.work_root / safe_name(key)

    @log_execution_time("Bundle acquisition and normalization", logger)
    def acquire_and_normalize(self, key: str, bundle_url: str, name_filter: Optional[str] = None,
                              token: CancellationToken | None = None) -> NormalizationResult:
        """
        Download, unpack and convert a tender bundle.

        Raises DownloadError / ArchiveError; per-file conversion failures are
        logged and skipped, so the result may be empty.
        """
        if not bundle_url:
            raise DownloadError(bundle_url or "", "Tender has no document bundle URL")

        work_dir = self.work_dir_for(key)
        self.cleanup(work_dir)
        original_dir = work_dir / "original"
        converted_dir = work_dir / "converted"
        original_dir.mkdir(parents=True, exist_ok=True)
        converted_dir.mkdir(parents=True, exist_ok=True)

        archive_path = work_dir / "bundle.zip"
        try:
            self._download(bundle_url, archive_path)
            if token:
                token.raise_if_cancelled()

            try:
                self._extract_members(archive_path, original_dir)
            except (zipfile.BadZipFile, zipfile.LargeZipFile, EOFError) as e:
                raise ArchiveError(bundle_url, f"Bundle is not a readable archive: {e}") from e
            archive_path.unlink(missing_ok=True)

            self._expand_nested_archives(original_dir)

            if name_filter:
                self._apply_name_filter(original_dir, name_filter)
        except Exception:
            self.cleanup(work_dir)
            raise

        if token:
            token.raise_if_cancelled()

        originals = sorted(p for p in original_dir.iterdir() if p.is_file())
        logger.info(f"Tender {key}: {len(originals)} files unpacked, converting...")
        normalized = self.convert_all(originals, converted_dir)
        logger.info(f"Tender {key}: {len(normalized)} normalized files")

        return NormalizationResult(normalized_files=normalized, work_dir=work_dir)

    def convert_all(self, originals: List[Path], converted_dir: Path) -> List[Path]:
        converted: List[Path] = []

        def _convert(source: Path) -> List[Path]:
            try:
                return convert_file(source, converted_dir)
            except ConversionError as e:
                logger.warning(f"Conversion failed, skipping: {e}")
                return []

        if self.workers == 1 or len(originals) <= 1:
            for source in originals:
                converted.extend(_convert(source))
        else:
            with ThreadPoolExecutor(max_workers=self.workers, thread_name_prefix="normalize") as executor:
                futures = [executor.submit(_convert, source) for source in originals]
                for future in as_completed(futures):
                    converted.extend(future.result())

        return sorted(set(converted))

    def cleanup(self, work_dir) -> None:
        """Remove a tender's working tree; no-op when it does not exist."""
        if work_dir is None:
            return
        work_dir = Path(work_dir)
        if work_dir.exists():
            shutil.rmtree(work_dir, ignore_errors=True)
            logger.debug(f"Removed work dir {work_dir}")

    # ==================== INTERNALS ====================

    def _download(self, url: str, destination: Path) -> None:
        logger.info(f"Downloading bundle from {url}")
        try:
            with self.session.get(
                url,
                stream=True,
                timeout=DOWNLOAD_TIMEOUT_SECONDS,
                verify=DOWNLOAD_VERIFY_SSL,
                headers={"User-Agent": USER_AGENT},
            ) as response:
                if not 200 <= response.status_code < 300:
                    raise DownloadError(url, "Bundle download failed", status_code=response.status_code)
                with open(destination, "wb") as f:
                    for chunk in response.iter_content(chunk_size=1024 * 64):
                        if chunk:
                            f.write(chunk)
        except requests.RequestException as e:
            raise DownloadError(url, f"Bundle download failed: {e}") from e

    @staticmethod
    def _extract_members(archive: Path, target_dir: Path) -> List[Path]:
        """Extract files flat by basename; directory structure is discarded."""
        extracted = []
        with zipfile.ZipFile(archive) as zf:
            for info in zf.infolist():
                if info.is_dir():
                    continue
                name = _member_name(info)
                if not name or name in (".", ".."):
                    continue
                destination = _free_path(target_dir / name)
                if destination.name != name:
                    logger.debug(f"Duplicate member {name} from {archive.name} saved as {destination.name}")
                with zf.open(info) as src, open(destination, "wb") as dst:
                    shutil.copyfileobj(src, dst)
                extracted.append(destination)
        return extracted

    def _expand_nested_archives(self, original_dir: Path) -> None:
        for _ in range(self.max_archive_depth):
            nested = sorted(p for p in original_dir.iterdir()
                            if p.is_file() and p.suffix.lower() in ARCHIVE_EXTENSIONS)
            if not nested:
                return
            for archive in nested:
                # Rename first: a member may carry the archive's own name
                staged = archive.with_name(f".{archive.name}.expanding")
                archive.rename(staged)
                try:
                    self._extract_members(staged, original_dir)
                    logger.info(f"Expanded nested archive {archive.name}")
                except (zipfile.BadZipFile, zipfile.LargeZipFile, EOFError) as e:
                    logger.warning(f"Skipping corrupt nested archive {archive.name}: {e}")
                finally:
                    staged.unlink(missing_ok=True)

        leftovers = [p for p in original_dir.iterdir() if p.suffix.lower() in ARCHIVE_EXTENSIONS]
        for archive in leftovers:
            logger.warning(f"Archive nesting deeper than {self.max_archive_depth}, dropping {archive.name}")
            archive.unlink(missing_ok=True)

    @staticmethod
    def _apply_name_filter(original_dir: Path, name_filter: str) -> None:
        needle = name_filter.lower()
        for path in original_dir.iterdir():
            if path.is_file() and needle not in path.name.lower():
                path.unlink()
