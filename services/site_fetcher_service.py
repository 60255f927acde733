"""
Site Fetcher - downloads candidate product pages, strips scripts/styles and
saves a local HTML copy the reasoning gateway can read
"""
import html
import io
import shutil
import uuid
from pathlib import Path

import requests
from bs4 import BeautifulSoup
from PyPDF2 import PdfReader

from config.pipeline_config import HTML_SCRATCH_DIR, SITE_FETCH_TIMEOUT_SECONDS, USER_AGENT
from utils.helpers import CancellationToken, safe_name
from utils.logging_config import get_logger

logger = get_logger(__name__, "pipeline")

NOISE_TAGS = ("script", "style", "noscript", "iframe", "svg")


def pdf_bytes_to_html(content: bytes) -> str:
    """Wrap the text layer of a PDF in a minimal HTML page."""
    reader = PdfReader(io.BytesIO(content))
    text_parts = []
    for page in reader.pages:
        page_text = page.extract_text()
        if page_text and page_text.strip():
            text_parts.append(page_text)
    if not text_parts:
        raise ValueError("No text found in PDF")
    body = "<br>".join(html.escape(part).replace("\n", "<br>") for part in text_parts)
    return f'<html><body><div class="pdf-content">{body}</div></body></html>'


def clean_html(raw: bytes | str) -> str:
    """Body markup without scripts, styles and other non-content tags."""
    soup = BeautifulSoup(raw, "html.parser")
    for tag in soup(NOISE_TAGS):
        tag.decompose()
    body = soup.body or soup
    return f"<html><body>{body.decode_contents()}</body></html>"


class SiteFetcher:
    def __init__(self, scratch_dir=HTML_SCRATCH_DIR, timeout: float = SITE_FETCH_TIMEOUT_SECONDS,
                 session: requests.Session | None = None):
        self.scratch_dir = Path(scratch_dir)
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers.setdefault("User-Agent", USER_AGENT)

    @staticmethod
    def new_dest_name() -> str:
        return f"{uuid.uuid4().hex}.html"

    def new_run_dir(self, key: str) -> Path:
        """Private directory for one enrichment run: scratch_dir/<key>/<run id>."""
        run_dir = self.scratch_dir / safe_name(key) / uuid.uuid4().hex
        run_dir.mkdir(parents=True, exist_ok=True)
        return run_dir

    def fetch_and_save(self, url: str, dest_name: str | None = None,
                       token: CancellationToken | None = None, run_dir=None) -> Path | None:
        """
        Download url and save a cleaned copy under run_dir (the scratch dir
        when no run dir is given).

        Returns the saved path, or None on any failure (network, empty body,
        unparsable PDF).
        """
        if token:
            token.raise_if_cancelled()

        target_dir = Path(run_dir) if run_dir is not None else self.scratch_dir
        dest_name = Path(dest_name or self.new_dest_name()).name
        try:
            response = self.session.get(url, timeout=self.timeout, headers={"User-Agent": USER_AGENT})
            response.raise_for_status()
            if not response.content:
                logger.info(f"Empty response from {url}")
                return None

            content_type = response.headers.get("content-type", "").lower()
            if "application/pdf" in content_type or url.lower().split("?")[0].endswith(".pdf"):
                page = pdf_bytes_to_html(response.content)
            else:
                page = clean_html(response.content)

            target_dir.mkdir(parents=True, exist_ok=True)
            path = target_dir / dest_name
            path.write_text(page, encoding="utf-8")
            logger.debug(f"Saved {url} -> {path}")
            return path

        except requests.RequestException as e:
            logger.info(f"Could not fetch {url}: {e}")
            return None
        except Exception as e:
            logger.warning(f"Could not process page {url}: {e}")
            return None

    def cleanup(self, run_dir):
        """Remove one run's directory (and its key dir once empty); other runs are untouched."""
        run_dir = Path(run_dir)
        if run_dir.exists():
            shutil.rmtree(run_dir, ignore_errors=True)
            logger.info(f"Removed scratch dir {run_dir}")

        key_dir = run_dir.parent
        if key_dir != self.scratch_dir and key_dir.parent == self.scratch_dir:
            try:
                key_dir.rmdir()
            except OSError:
                # Another run of the same tender still holds pages here
                pass
