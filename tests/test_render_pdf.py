from __future__ import annotations

import io
import time
from pathlib import Path
from typing import List, Optional, Tuple

import fitz
import pytest
from reportlab.pdfgen import canvas as rl_canvas

from cardcraft import config
from cardcraft.pipeline.compose import Card, Document, Signature, compose
from cardcraft.pipeline.layout import compute_layout, to_points
from cardcraft.pipeline.render_pdf import (
    RenderEngineUnavailable,
    RenderError,
    RenderTimeout,
    ReportLabRenderer,
    _wrap_words,
    draw_document,
    render_document_pdf,
)
from cardcraft.pipeline.run import PdfGenerationFailed, render_with_retry
from cardcraft.pipeline.templates import Template


def _document(count: int = 5, cards_per_page: int = 4, template: str = "classic") -> Document:
    cards = [Card(f"Guest {i}", "Vase", f"Thank you for the lovely vase, guest {i}.") for i in range(count)]
    return compose(cards, template, compute_layout(cards_per_page), Signature("With love,", "Sam and Alex"))


class ScriptedRenderer:
    def __init__(self, outcomes: List[object]) -> None:
        self.outcomes = list(outcomes)
        self.calls = 0

    def render(self, document: Document, page_size: Optional[Tuple[float, float]] = None) -> bytes:
        self.calls += 1
        outcome = self.outcomes.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        if outcome == "real":
            return draw_document(document, page_size or document.layout.page_size_points)
        return outcome  # type: ignore[return-value]


def test_renders_one_pdf_page_per_sheet() -> None:
    document = _document(count=5)
    with ReportLabRenderer() as renderer:
        data = renderer.render(document)
    assert data.startswith(b"%PDF")
    with fitz.open(stream=data, filetype="pdf") as pdf:
        assert pdf.page_count == 2
        first = pdf.load_page(0)
        assert first.rect.width == pytest.approx(612)
        assert first.rect.height == pytest.approx(792)
        text = first.get_text()
        assert "Dear Guest 0," in text
        assert "Sam and Alex" in text
        assert "Guest 4" not in text
        assert "Dear Guest 4," in pdf.load_page(1).get_text()


@pytest.mark.parametrize("template", [t.value for t in Template])
@pytest.mark.parametrize("cards_per_page", [1, 2, 4])
def test_every_template_and_density_renders(template: str, cards_per_page: int) -> None:
    document = _document(count=3, cards_per_page=cards_per_page, template=template)
    data = draw_document(document, document.layout.page_size_points)
    with fitz.open(stream=data, filetype="pdf") as pdf:
        assert pdf.page_count == len(document.pages)


def test_long_message_is_fitted_inside_the_card() -> None:
    message = " ".join(["We are so grateful for your kindness and generosity."] * 120)
    document = compose([Card("Ann", "Vase", message)], "classic", compute_layout(4))
    data = draw_document(document, document.layout.page_size_points)
    with fitz.open(stream=data, filetype="pdf") as pdf:
        page = pdf.load_page(0)
        slot = document.pages[0].slots[0]
        card_bottom = (slot.top_in + slot.height_in) * 72
        card_right = (slot.left_in + slot.width_in) * 72
        for x0, y0, x1, y1, *_ in page.get_text("words"):
            assert y1 <= card_bottom + 1
            assert x1 <= card_right + 1


def test_oversized_text_stays_inside_its_card() -> None:
    long_word = "x" * 160
    long_name = " ".join(["Bartholomew"] * 14)
    cards = [Card(long_name, "Vase", long_word), Card("Ann", "Vase", f"Thanks {long_word} again")]
    document = compose(cards, "classic", compute_layout(4))
    data = draw_document(document, document.layout.page_size_points)

    boxes = [
        (
            to_points(slot.left_in),
            to_points(slot.top_in),
            to_points(slot.left_in + slot.width_in),
            to_points(slot.top_in + slot.height_in),
        )
        for slot in document.pages[0].slots
        if slot.card is not None
    ]
    with fitz.open(stream=data, filetype="pdf") as pdf:
        words = pdf.load_page(0).get_text("words")

    assert any("xxxxxxxx" in word[4] for word in words)
    for x0, y0, x1, y1, text, *_ in words:
        assert any(
            left - 1 <= x0 and x1 <= right + 1 and top - 1 <= y0 and y1 <= bottom + 1
            for left, top, right, bottom in boxes
        ), text


def test_wide_word_is_broken_across_lines() -> None:
    canv = rl_canvas.Canvas(io.BytesIO())
    lines = _wrap_words(canv, "hello " + "y" * 200 + " bye", "Times-Roman", 10, 100)
    assert lines[0] == "hello"
    assert "".join(lines[1:]).replace(" ", "").startswith("y" * 200)
    assert lines[-1].endswith("bye")
    assert all(canv.stringWidth(line, "Times-Roman", 10) <= 100 for line in lines)


def test_timeout_is_reported(monkeypatch) -> None:
    def slow(document, page_size):  # noqa: ANN001
        time.sleep(0.5)
        return b""

    monkeypatch.setattr("cardcraft.pipeline.render_pdf.draw_document", slow)
    with ReportLabRenderer(timeout=0.05) as renderer:
        with pytest.raises(RenderTimeout):
            renderer.render(_document())


def test_hung_draw_does_not_block_the_retry(monkeypatch) -> None:
    calls = []

    def first_hangs(document, page_size):  # noqa: ANN001
        calls.append(page_size)
        if len(calls) == 1:
            time.sleep(1.0)
        return draw_document(document, page_size)

    monkeypatch.setattr("cardcraft.pipeline.render_pdf.draw_document", first_hangs)
    with ReportLabRenderer(timeout=0.3) as renderer:
        assert render_with_retry(renderer, _document()).startswith(b"%PDF")
        assert len(calls) == 2
        assert renderer.render(_document(count=1)).startswith(b"%PDF")


def test_engine_errors_are_wrapped(monkeypatch) -> None:
    def broken(document, page_size):  # noqa: ANN001
        raise ValueError("bad font")

    monkeypatch.setattr("cardcraft.pipeline.render_pdf.draw_document", broken)
    with ReportLabRenderer() as renderer:
        with pytest.raises(RenderEngineUnavailable) as info:
            renderer.render(_document())
    assert isinstance(info.value.__cause__, ValueError)


def test_closed_renderer_is_unavailable() -> None:
    renderer = ReportLabRenderer()
    renderer.close()
    with pytest.raises(RenderEngineUnavailable):
        renderer.render(_document())


def test_retry_once_then_succeed() -> None:
    renderer = ScriptedRenderer([RenderTimeout("slow"), "real"])
    data = render_with_retry(renderer, _document())
    assert data.startswith(b"%PDF")
    assert renderer.calls == 2


def test_second_failure_is_fatal() -> None:
    renderer = ScriptedRenderer([RenderTimeout("slow"), RenderEngineUnavailable("gone"), "real"])
    with pytest.raises(PdfGenerationFailed) as info:
        render_with_retry(renderer, _document())
    assert renderer.calls == 2
    assert info.value.kind == "RenderEngineUnavailable"
    assert str(info.value) == config.USER_FAILURE_MESSAGE
    assert isinstance(info.value.__cause__, RenderError)


def test_partial_pdf_is_never_returned() -> None:
    two_pages = _document(count=5)
    one_page = draw_document(_document(count=1), two_pages.layout.page_size_points)
    renderer = ScriptedRenderer([one_page, b"not a pdf"])
    with pytest.raises(PdfGenerationFailed) as info:
        render_with_retry(renderer, two_pages)
    assert info.value.kind == "IncompleteRender"


def test_render_document_pdf_writes_file(tmp_path: Path) -> None:
    out = render_document_pdf(_document(count=2), tmp_path / "nested" / "cards.pdf")
    assert out.exists()
    assert out.read_bytes().startswith(b"%PDF")


@pytest.mark.parametrize("attempts", [0, -1])
def test_retry_needs_at_least_one_attempt(attempts: int) -> None:
    renderer = ScriptedRenderer(["real"])
    with pytest.raises(ValueError):
        render_with_retry(renderer, _document(), attempts=attempts)
    assert renderer.calls == 0
