from types import SimpleNamespace

import pytest

from services import gemini_service
from services.gemini_service import GeminiReasoningGateway, guess_mime_type
from utils.exceptions import PipelineCancelled
from utils.helpers import CancellationToken


def _response(text="answer", blocked=False):
    if blocked:
        return SimpleNamespace(candidates=[], text="")
    part = SimpleNamespace(text=text)
    candidate = SimpleNamespace(content=SimpleNamespace(parts=[part]))
    return SimpleNamespace(candidates=[candidate], text=text)


class FakeModel:
    def __init__(self, response=None, error=None):
        self.response = response if response is not None else _response()
        self.error = error
        self.calls = []

    def generate_content(self, contents, **kwargs):
        self.calls.append((contents, kwargs))
        if self.error:
            raise self.error
        return self.response


def _state(name):
    return SimpleNamespace(name=name)


@pytest.fixture
def fake_files(monkeypatch):
    """Replace the Gemini file API; returns the uploaded/polled/deleted log."""
    log = {"uploaded": [], "polled": 0, "deleted": []}
    states = {"queue": ["PROCESSING", "ACTIVE"]}

    def upload_file(path, mime_type=None, display_name=None):
        log["uploaded"].append((path, mime_type))
        return SimpleNamespace(name="files/abc", state=_state("PROCESSING"))

    def get_file(name):
        log["polled"] += 1
        return SimpleNamespace(name=name, state=_state(states["queue"].pop(0)))

    def delete_file(name):
        log["deleted"].append(name)

    monkeypatch.setattr(gemini_service.genai, "upload_file", upload_file)
    monkeypatch.setattr(gemini_service.genai, "get_file", get_file)
    monkeypatch.setattr(gemini_service.genai, "delete_file", delete_file)
    log["states"] = states
    return log


def test_text_generation_returns_stripped_text():
    model = FakeModel(_response("  three queries \n"))
    gateway = GeminiReasoningGateway(model=model, timeout=5)

    assert gateway.generate_queries("Product name: Laptop\n") == "three queries"
    contents, kwargs = model.calls[0]
    assert contents == ["Product name: Laptop\n"]
    assert kwargs["request_options"] == {"timeout": 5}
    assert kwargs["safety_settings"] == gemini_service.SAFETY_SETTINGS


def test_failures_become_empty_answers():
    assert GeminiReasoningGateway(model=FakeModel(error=RuntimeError("quota"))).generate_report("report") == ""
    assert GeminiReasoningGateway(model=FakeModel(_response(blocked=True))).synthesize_product("prompt") == ""
    assert GeminiReasoningGateway(model=FakeModel()).generate_queries("   ") == ""
    assert GeminiReasoningGateway(model=FakeModel()).extract_structured("") == ""


def test_missing_file_is_rejected_without_calling_model(tmp_path):
    model = FakeModel()

    answer = GeminiReasoningGateway(model=model).summarize_document(tmp_path / "missing.pdf")

    assert answer == ""
    assert model.calls == []


def test_file_is_uploaded_polled_and_deleted(tmp_path, fake_files):
    page = tmp_path / "shop.html"
    page.write_text("<p>Laptop 50 000 rub</p>", encoding="utf-8")
    model = FakeModel(_response("price 50 000 rub"))
    gateway = GeminiReasoningGateway(model=model, poll_attempts=5, poll_interval=0)

    answer = gateway.analyze_page(page, "Extract facts")

    assert answer == "price 50 000 rub"
    assert fake_files["uploaded"] == [(str(page), "text/html")]
    assert fake_files["polled"] == 2
    assert fake_files["deleted"] == ["files/abc"]
    contents, _ = model.calls[0]
    assert contents[1] == "Extract facts"


def test_failed_upload_processing_gives_empty_answer(tmp_path, fake_files):
    document = tmp_path / "spec.pdf"
    document.write_bytes(b"%PDF-1.4")
    fake_files["states"]["queue"] = ["FAILED"]
    model = FakeModel()

    answer = GeminiReasoningGateway(model=model, poll_interval=0).summarize_document(document)

    assert answer == ""
    assert model.calls == []


def test_cancellation_propagates():
    token = CancellationToken()
    token.cancel("shutdown")

    with pytest.raises(PipelineCancelled):
        GeminiReasoningGateway(model=FakeModel()).generate_report("report", token=token)


def test_guess_mime_type(tmp_path):
    assert guess_mime_type(tmp_path / "a.HTML") == "text/html"
    assert guess_mime_type(tmp_path / "a.csv") == "text/csv"
    assert guess_mime_type(tmp_path / "a.unknownext") == "text/plain"
