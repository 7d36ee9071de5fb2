from __future__ import annotations

import io
import logging
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FuturesTimeout
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Protocol, Tuple

from reportlab.lib import colors
from reportlab.pdfgen import canvas

from .. import config
from .compose import Document, Slot, message_lines
from .layout import to_points
from .templates import SANS, SCRIPT, SERIF, CardStyle, RoleStyle


logger = logging.getLogger(__name__)

MIN_FONT_SIZE = 5.0
LINE_HEIGHT = 1.35
ELLIPSIS = "..."

FONTS = {
    # (family, italic) -> reportlab base-14 font
    (SERIF, False): "Times-Roman",
    (SERIF, True): "Times-Italic",
    (SCRIPT, False): "Times-BoldItalic",
    (SCRIPT, True): "Times-BoldItalic",
    (SANS, False): "Helvetica",
    (SANS, True): "Helvetica-Oblique",
}


class RenderError(RuntimeError):
    pass


class RenderTimeout(RenderError):
    pass


class RenderEngineUnavailable(RenderError):
    pass


class IncompleteRender(RenderError):
    pass


class Renderer(Protocol):
    def render(self, document: Document, page_size: Optional[Tuple[float, float]] = None) -> bytes:
        ...


def _hex(value: str, default=colors.black) -> colors.Color:
    if not value:
        return default
    try:
        return colors.HexColor("#" + str(value).lstrip("#"))
    except Exception:
        return default


def _font_for(role: RoleStyle) -> str:
    return FONTS.get((role.family, role.italic), "Times-Roman")


def _text_width(canv: canvas.Canvas, text: str, font_name: str, size: float, char_space: float) -> float:
    return canv.stringWidth(text, font_name, size) + char_space * max(0, len(text) - 1)


def _fit_font(
    canv: canvas.Canvas,
    text: str,
    font_name: str,
    base_size: float,
    max_width: float,
    char_space: float = 0.0,
) -> float:
    """Shrink a single-line text until it fits the width."""
    size = float(base_size)
    while size > MIN_FONT_SIZE:
        if _text_width(canv, text, font_name, size, char_space) <= max_width:
            return size
        size -= 0.5
    return MIN_FONT_SIZE


def _with_ellipsis(
    canv: canvas.Canvas,
    text: str,
    font_name: str,
    size: float,
    max_width: float,
    char_space: float = 0.0,
) -> str:
    cut = text.rstrip(". ")
    while cut and _text_width(canv, cut + ELLIPSIS, font_name, size, char_space) > max_width:
        cut = cut[:-1]
    return cut.rstrip() + ELLIPSIS


def _clip_text(
    canv: canvas.Canvas,
    text: str,
    font_name: str,
    size: float,
    max_width: float,
    char_space: float = 0.0,
) -> str:
    if _text_width(canv, text, font_name, size, char_space) <= max_width:
        return text
    return _with_ellipsis(canv, text, font_name, size, max_width, char_space)


def _split_word(
    canv: canvas.Canvas,
    word: str,
    font_name: str,
    font_size: float,
    max_width: float,
    char_space: float = 0.0,
) -> List[str]:
    pieces: List[str] = []
    piece = ""
    for ch in word:
        if piece and _text_width(canv, piece + ch, font_name, font_size, char_space) > max_width:
            pieces.append(piece)
            piece = ch
        else:
            piece += ch
    pieces.append(piece)
    return pieces


def _wrap_words(
    canv: canvas.Canvas,
    text: str,
    font_name: str,
    font_size: float,
    max_width: float,
    char_space: float = 0.0,
) -> List[str]:
    words = (text or "").split()
    if not words:
        return [""]

    lines: List[str] = []
    cur: List[str] = []

    for w in words:
        test = " ".join(cur + [w])
        if _text_width(canv, test, font_name, font_size, char_space) <= max_width:
            cur.append(w)
            continue

        if cur:
            lines.append(" ".join(cur))
            cur = []

        if _text_width(canv, w, font_name, font_size, char_space) <= max_width:
            cur = [w]
            continue

        # a word wider than the card is broken across lines
        pieces = _split_word(canv, w, font_name, font_size, max_width, char_space)
        lines.extend(pieces[:-1])
        cur = [pieces[-1]]

    if cur:
        lines.append(" ".join(cur))

    return lines


@dataclass
class _Block:
    role: RoleStyle
    font: str
    size: float
    lines: List[str]
    space_after: float

    @property
    def height(self) -> float:
        return len(self.lines) * self.size * LINE_HEIGHT + self.space_after


def _layout_blocks(
    canv: canvas.Canvas,
    document: Document,
    slot: Slot,
    scale: float,
    text_w: float,
) -> List[_Block]:
    template = document.template
    card = slot.card
    blocks: List[_Block] = []

    def _single(role_name: str, text: str, space_after: float) -> None:
        role = template.role(role_name)
        font = _font_for(role)
        shown = text.upper() if role.uppercase else text
        size = _fit_font(canv, shown, font, role.size_pt * scale, text_w, role.letter_spacing_pt)
        fitted = _clip_text(canv, shown, font, size, text_w, role.letter_spacing_pt)
        if fitted != shown:
            logger.warning("%s line cut to fit the card: %r", role_name, shown)
        blocks.append(_Block(role, font, size, [fitted], space_after * scale))

    _single("header", document.header, 10)
    _single("recipient", f"Dear {card.recipient_name},", 8)

    role = template.role("message")
    font = _font_for(role)
    size = role.size_pt * scale
    wrapped: List[str] = []
    for line in message_lines(card.message):
        if not line:
            wrapped.append("")
            continue
        shown = line.upper() if role.uppercase else line
        wrapped.extend(_wrap_words(canv, shown, font, size, text_w, role.letter_spacing_pt))
    blocks.append(_Block(role, font, size, wrapped, 12 * scale))

    _single("signature", document.signature.closing, 2)
    _single("name", document.signature.names, 0)
    return blocks


def _fits(canv: canvas.Canvas, blocks: List[_Block], text_w: float, text_h: float) -> bool:
    if sum(b.height for b in blocks) > text_h:
        return False
    return all(
        _text_width(canv, line, b.font, b.size, b.role.letter_spacing_pt) <= text_w
        for b in blocks
        for line in b.lines
    )


def _fit_blocks(canv: canvas.Canvas, document: Document, slot: Slot, text_w: float, text_h: float) -> List[_Block]:
    scale = document.layout.font_scale
    min_scale = MIN_FONT_SIZE / document.template.role("message").size_pt
    while True:
        blocks = _layout_blocks(canv, document, slot, scale, text_w)
        if _fits(canv, blocks, text_w, text_h):
            return blocks
        if scale <= min_scale:
            break
        scale = max(scale * 0.95, min_scale)

    # still too tall at the smallest size: cut the message and mark the cut
    overflow = sum(b.height for b in blocks) - text_h
    message = blocks[2]
    line_h = message.size * LINE_HEIGHT
    drop = int(overflow // line_h) + 1
    keep = max(1, len(message.lines) - drop)
    logger.warning(
        "Message for %s truncated from %d to %d lines",
        slot.card.recipient_name if slot.card else "?",
        len(message.lines),
        keep,
    )
    message.lines = message.lines[:keep]
    message.lines[-1] = _with_ellipsis(
        canv, message.lines[-1], message.font, message.size, text_w, message.role.letter_spacing_pt
    )
    return blocks


def _draw_card_box(canv: canvas.Canvas, style: CardStyle, x: float, y: float, w: float, h: float) -> None:
    canv.saveState()
    if style.gradient_to:
        path = canv.beginPath()
        path.rect(x, y, w, h)
        canv.clipPath(path, stroke=0, fill=0)
        canv.linearGradient(x, y + h, x, y, (_hex(style.background), _hex(style.gradient_to)), extend=False)
    else:
        canv.setFillColor(_hex(style.background, colors.white))
        canv.rect(x, y, w, h, stroke=0, fill=1)
    canv.restoreState()

    if style.border_kind == "none":
        return

    canv.saveState()
    canv.setStrokeColor(_hex(style.border_color))
    bw = float(style.border_width_pt)
    if style.border_kind == "double":
        # two thin rules with a gap, like css `double`
        line = max(0.5, bw / 3)
        canv.setLineWidth(line)
        canv.rect(x + line / 2, y + line / 2, w - line, h - line, stroke=1, fill=0)
        inner = bw - line / 2
        canv.rect(x + inner, y + inner, w - 2 * inner, h - 2 * inner, stroke=1, fill=0)
    elif style.border_kind == "inset":
        canv.setLineWidth(bw)
        canv.rect(x + bw / 2, y + bw / 2, w - bw, h - bw, stroke=1, fill=0)
        canv.setLineWidth(1)
        canv.rect(x + 6, y + 6, w - 12, h - 12, stroke=1, fill=0)
    else:
        if style.border_kind == "dashed":
            canv.setDash(6, 3)
        canv.setLineWidth(bw)
        canv.rect(x + bw / 2, y + bw / 2, w - bw, h - bw, stroke=1, fill=0)
    canv.restoreState()


def _draw_placeholder(canv: canvas.Canvas, x: float, y: float, w: float, h: float) -> None:
    canv.saveState()
    canv.setStrokeColor(colors.Color(0.85, 0.85, 0.85))
    canv.setLineWidth(0.5)
    canv.setDash(2, 4)
    canv.rect(x, y, w, h, stroke=1, fill=0)
    canv.restoreState()


def _draw_line(canv: canvas.Canvas, block: _Block, text: str, x: float, w: float, y: float) -> None:
    char_space = block.role.letter_spacing_pt
    if block.role.align == "center":
        width = _text_width(canv, text, block.font, block.size, char_space)
        canv.drawString(x + (w - width) / 2, y, text, charSpace=char_space)
    else:
        canv.drawString(x, y, text, charSpace=char_space)


def _draw_card(canv: canvas.Canvas, document: Document, slot: Slot, page_h: float) -> None:
    x = to_points(slot.left_in)
    w = to_points(slot.width_in)
    h = to_points(slot.height_in)
    y = page_h - to_points(slot.top_in) - h

    if slot.card is None:
        _draw_placeholder(canv, x, y, w, h)
        return

    canv.saveState()
    # nothing drawn for this card may land on its neighbours
    clip = canv.beginPath()
    clip.rect(x, y, w, h)
    canv.clipPath(clip, stroke=0, fill=0)

    _draw_card_box(canv, document.template.card, x, y, w, h)

    pad = min(w, h) * 0.08
    text_x = x + pad
    text_w = w - 2 * pad
    text_h = h - 2 * pad

    blocks = _fit_blocks(canv, document, slot, text_w, text_h)
    total = sum(b.height for b in blocks)
    cursor = y + h / 2 + total / 2

    for block in blocks:
        canv.setFillColor(_hex(block.role.color))
        canv.setFont(block.font, block.size)
        for text in block.lines:
            cursor -= block.size * LINE_HEIGHT
            if text:
                _draw_line(canv, block, text, text_x, text_w, cursor + block.size * (LINE_HEIGHT - 1))
        cursor -= block.space_after
    canv.restoreState()


def draw_document(document: Document, page_size: Tuple[float, float]) -> bytes:
    buffer = io.BytesIO()
    canv = canvas.Canvas(buffer, pagesize=page_size)
    canv.setTitle(f"{document.header} cards")
    _, ph = page_size

    for page in document.pages:
        for slot in page.slots:
            _draw_card(canv, document, slot, ph)
        canv.showPage()

    canv.save()
    return buffer.getvalue()


class ReportLabRenderer:
    """
    Draws a composed document straight onto a reportlab canvas.

    One worker thread serialises calls; each call waits at most `timeout`
    seconds for its result.
    """

    def __init__(self, timeout: Optional[float] = None) -> None:
        self.timeout = config.RENDER_TIMEOUT_SECONDS if timeout is None else float(timeout)
        self._executor = self._new_executor()

    def render(self, document: Document, page_size: Optional[Tuple[float, float]] = None) -> bytes:
        size = page_size or document.layout.page_size_points
        try:
            future = self._executor.submit(draw_document, document, size)
        except RuntimeError as exc:
            raise RenderEngineUnavailable("Renderer has been shut down") from exc
        try:
            return future.result(timeout=self.timeout)
        except FuturesTimeout as exc:
            self._replace_executor()
            raise RenderTimeout(f"Rendering exceeded {self.timeout:g}s") from exc
        except RenderError:
            raise
        except Exception as exc:
            raise RenderEngineUnavailable(f"PDF engine failed: {exc}") from exc

    def _new_executor(self) -> ThreadPoolExecutor:
        return ThreadPoolExecutor(max_workers=1, thread_name_prefix="cardcraft-render")

    def _replace_executor(self) -> None:
        # a running draw cannot be cancelled; it keeps the old worker while later calls get a new one
        stale = self._executor
        self._executor = self._new_executor()
        stale.shutdown(wait=False)

    def close(self) -> None:
        self._executor.shutdown(wait=False)

    def __enter__(self) -> "ReportLabRenderer":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:  # noqa: ANN001
        self.close()


def render_document_pdf(document: Document, output_path: Path, renderer: Optional[Renderer] = None) -> Path:
    if renderer is None:
        with ReportLabRenderer() as engine:
            data = engine.render(document, document.layout.page_size_points)
    else:
        data = renderer.render(document, document.layout.page_size_points)
    output_path.parent.mkdir(parents=True, exist_ok=True)
    output_path.write_bytes(data)
    return output_path
