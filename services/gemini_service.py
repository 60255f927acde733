"""
Gemini Reasoning Gateway - document summaries, structured extraction,
search query generation, page analysis, product synthesis and final reports
"""
import mimetypes
import time
import traceback
from pathlib import Path

import google.generativeai as genai
from google.generativeai.types import HarmCategory, HarmBlockThreshold

from config.settings import GEMINI_MODEL
from config.pipeline_config import (
    FILE_POLL_ATTEMPTS,
    FILE_POLL_INTERVAL_SECONDS,
    GEMINI_MAX_OUTPUT_TOKENS,
    GEMINI_REQUEST_TIMEOUT_SECONDS,
    GEMINI_TEMPERATURE,
    MAX_PROMPT_CHARS,
)
from models.prompt import FilePart, build_prompt
from services.prompts import SUMMARIZE_DOCUMENT_PROMPT, build_extraction_prompt
from utils.exceptions import GatewayError, GatewayFailure, PipelineCancelled
from utils.helpers import CancellationToken, call_with_timeout, truncate_text
from utils.logging_config import get_logger

logger = get_logger(__name__, "pipeline")

SAFETY_SETTINGS = {
    HarmCategory.HARM_CATEGORY_HARASSMENT: HarmBlockThreshold.BLOCK_ONLY_HIGH,
    HarmCategory.HARM_CATEGORY_HATE_SPEECH: HarmBlockThreshold.BLOCK_ONLY_HIGH,
    HarmCategory.HARM_CATEGORY_SEXUALLY_EXPLICIT: HarmBlockThreshold.BLOCK_ONLY_HIGH,
    HarmCategory.HARM_CATEGORY_DANGEROUS_CONTENT: HarmBlockThreshold.BLOCK_ONLY_HIGH,
}

_MIME_OVERRIDES = {
    ".html": "text/html",
    ".htm": "text/html",
    ".pdf": "application/pdf",
    ".txt": "text/plain",
    ".csv": "text/csv",
}


def guess_mime_type(path: Path) -> str:
    suffix = path.suffix.lower()
    if suffix in _MIME_OVERRIDES:
        return _MIME_OVERRIDES[suffix]
    guessed, _ = mimetypes.guess_type(path.name)
    return guessed or "text/plain"


class GeminiReasoningGateway:
    """
    Thin wrapper around google.generativeai used by every pipeline stage.

    Every public operation returns the model's text, or "" on any failure
    (timeout, blocked response, upload error). Cancellation is the only
    error that propagates.
    """

    def __init__(self, model=None, model_name: str = GEMINI_MODEL,
                 timeout: float = GEMINI_REQUEST_TIMEOUT_SECONDS,
                 poll_attempts: int = FILE_POLL_ATTEMPTS,
                 poll_interval: float = FILE_POLL_INTERVAL_SECONDS):
        self.model = model or genai.GenerativeModel(model_name)
        self.model_name = model_name
        self.timeout = timeout
        self.poll_attempts = poll_attempts
        self.poll_interval = poll_interval

    # ==================== OPERATIONS ====================

    def summarize_document(self, path, token: CancellationToken | None = None) -> str:
        """Analysis text for one normalized tender document."""
        return self.generate(
            [{"kind": "file", "path": Path(path), "mime_type": guess_mime_type(Path(path))},
             {"kind": "text", "text": SUMMARIZE_DOCUMENT_PROMPT}],
            token=token,
            description=f"summary of {Path(path).name}",
        )

    def extract_structured(self, text: str, token: CancellationToken | None = None) -> str:
        """Raw model answer expected to hold one fenced ```json block."""
        if not text or not text.strip():
            return ""
        return self.generate(
            [{"kind": "text", "text": build_extraction_prompt(truncate_text(text, MAX_PROMPT_CHARS))}],
            token=token,
            description="structured extraction",
        )

    def generate_queries(self, prompt: str, token: CancellationToken | None = None) -> str:
        return self._generate_text(prompt, token, "query generation")

    def analyze_page(self, path, instruction: str, token: CancellationToken | None = None) -> str:
        return self.generate(
            [{"kind": "file", "path": Path(path), "mime_type": "text/html"},
             {"kind": "text", "text": instruction}],
            token=token,
            description=f"page analysis of {Path(path).name}",
        )

    def synthesize_product(self, prompt: str, token: CancellationToken | None = None) -> str:
        return self._generate_text(prompt, token, "product synthesis")

    def generate_report(self, prompt: str, token: CancellationToken | None = None) -> str:
        return self._generate_text(prompt, token, "final report")

    # ==================== CORE CALL ====================

    def _generate_text(self, prompt: str, token, description: str) -> str:
        if not prompt or not prompt.strip():
            return ""
        return self.generate(
            [{"kind": "text", "text": truncate_text(prompt, MAX_PROMPT_CHARS)}],
            token=token,
            description=description,
        )

    def generate(self, parts, token: CancellationToken | None = None, description: str = "request") -> str:
        """
        Send a list of prompt parts to Gemini and return the stripped text.

        File parts are uploaded first and polled until processed; uploads are
        deleted afterwards.
        """
        if token:
            token.raise_if_cancelled()

        uploaded = []
        try:
            prompt = build_prompt(*parts)
            contents = []
            for part in prompt:
                if isinstance(part, FilePart):
                    remote = self._upload(part, token)
                    uploaded.append(remote)
                    contents.append(remote)
                else:
                    contents.append(part.text)

            if token:
                token.raise_if_cancelled()

            response = call_with_timeout(
                self.model.generate_content,
                self.timeout + 5,
                contents,
                generation_config={
                    "temperature": GEMINI_TEMPERATURE,
                    "max_output_tokens": GEMINI_MAX_OUTPUT_TOKENS,
                },
                safety_settings=SAFETY_SETTINGS,
                request_options={"timeout": self.timeout},
            )
            text = self._response_text(response)
            logger.debug(f"Gemini {description}: {len(text)} chars")
            return text

        except PipelineCancelled:
            raise
        except GatewayError as e:
            logger.warning(f"Gemini {description} failed: {e}")
            return ""
        except ValueError as e:
            # pydantic validation of parts or a blocked response
            logger.warning(f"Gemini {description} rejected: {e}")
            return ""
        except Exception as e:
            logger.error(f"Gemini {description} error: {e}")
            traceback.print_exc()
            return ""
        finally:
            for remote in uploaded:
                self._delete(remote)

    def _upload(self, part: FilePart, token: CancellationToken | None):
        remote = call_with_timeout(
            genai.upload_file,
            self.timeout,
            path=str(part.path),
            mime_type=part.mime_type or guess_mime_type(part.path),
            display_name=part.path.name,
        )

        attempts = 0
        while remote.state.name == "PROCESSING":
            if token:
                token.raise_if_cancelled()
            attempts += 1
            if attempts > self.poll_attempts:
                raise GatewayFailure(f"uploaded file {part.path.name} still processing after {self.poll_attempts} polls")
            time.sleep(self.poll_interval)
            remote = genai.get_file(remote.name)

        if remote.state.name == "FAILED":
            raise GatewayFailure(f"upload processing failed for {part.path.name}")

        return remote

    def _delete(self, remote):
        try:
            genai.delete_file(remote.name)
        except Exception as e:
            logger.debug(f"Could not delete uploaded file {getattr(remote, 'name', remote)}: {e}")

    @staticmethod
    def _response_text(response) -> str:
        if response is None:
            raise GatewayFailure("empty response")

        if not response.candidates:
            raise GatewayFailure("response was blocked by safety filters")

        candidate = response.candidates[0]
        if not candidate.content or not candidate.content.parts:
            raise GatewayFailure("response has no content parts")

        return (response.text or "").strip()
