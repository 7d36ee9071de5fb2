from __future__ import annotations

import html
from dataclasses import dataclass, field
from typing import Iterable, Iterator, List, Mapping, Optional, Sequence, TypeVar, Union

from .. import config
from .layout import LayoutSpec
from .templates import Template, TemplateSpec, resolve_template


T = TypeVar("T")


class EmptyInput(ValueError):
    pass


@dataclass(frozen=True)
class Card:
    recipient_name: str
    gift: str = ""
    message: str = ""

    @classmethod
    def from_mapping(cls, row: Mapping[str, object]) -> "Card":
        name = row.get("recipient_name", row.get("name", ""))
        return cls(
            recipient_name=str(name or "").strip(),
            gift=str(row.get("gift") or "").strip(),
            message=str(row.get("message") or "").strip(),
        )


@dataclass(frozen=True)
class Signature:
    closing: str = config.SIGNATURE_LINE
    names: str = config.SIGNERS

    @classmethod
    def from_config(cls) -> "Signature":
        # read at call time so --signers / env changes apply
        return cls(closing=config.SIGNATURE_LINE, names=config.SIGNERS)


@dataclass(frozen=True)
class Slot:
    index: int
    row: int
    col: int
    left_in: float
    top_in: float
    width_in: float
    height_in: float
    card: Optional[Card] = None

    @property
    def is_placeholder(self) -> bool:
        return self.card is None


@dataclass(frozen=True)
class Page:
    number: int
    slots: List[Slot] = field(default_factory=list)

    @property
    def cards(self) -> List[Card]:
        return [slot.card for slot in self.slots if slot.card is not None]

    @property
    def placeholders(self) -> List[Slot]:
        return [slot for slot in self.slots if slot.is_placeholder]


def message_lines(text: str) -> List[str]:
    """
    Split free text into display lines. A blank entry marks a paragraph break;
    runs of blank lines collapse to one and leading/trailing blanks are dropped.
    """
    normalized = (text or "").replace("\r\n", "\n").replace("\r", "\n")
    lines: List[str] = []
    for raw in normalized.split("\n"):
        line = " ".join(raw.split())
        if not line:
            if lines and lines[-1]:
                lines.append("")
            continue
        lines.append(line)
    while lines and not lines[-1]:
        lines.pop()
    return lines


def _e(text: str) -> str:
    return html.escape(text or "", quote=True)


_BASE_CSS = """
@page {{ size: {page_w}in {page_h}in; margin: 0; }}
* {{ margin: 0; padding: 0; box-sizing: border-box; }}
body {{ background: #FFFFFF; }}
.sheet {{ position: relative; width: {page_w}in; height: {page_h}in; overflow: hidden; page-break-after: always; }}
.sheet:last-child {{ page-break-after: auto; }}
.card {{ position: absolute; display: flex; flex-direction: column; justify-content: center; padding: {pad}in; overflow: hidden; }}
.message p {{ margin-bottom: 0.6em; }}
.signature {{ margin-top: 1.2em; text-align: center; }}
""".strip()


@dataclass(frozen=True)
class Document:
    pages: List[Page]
    template: TemplateSpec
    layout: LayoutSpec
    signature: Signature
    header: str = config.HEADER_TEXT

    def cards(self) -> Iterator[Card]:
        for page in self.pages:
            for slot in page.slots:
                if slot.card is not None:
                    yield slot.card

    @property
    def card_count(self) -> int:
        return sum(len(page.cards) for page in self.pages)

    @property
    def placeholder_count(self) -> int:
        return sum(len(page.placeholders) for page in self.pages)

    def stylesheet(self) -> str:
        pad = round(min(self.layout.card_width_in, self.layout.card_height_in) * 0.08, 3)
        base = _BASE_CSS.format(page_w=self.layout.page_width_in, page_h=self.layout.page_height_in, pad=pad)
        return base + "\n" + self.template.to_css(self.layout.font_scale)

    def _card_html(self, slot: Slot) -> str:
        box = (
            f"left: {slot.left_in}in; top: {slot.top_in}in; "
            f"width: {slot.width_in}in; height: {slot.height_in}in;"
        )
        position = f'data-row="{slot.row}" data-col="{slot.col}"'
        if slot.card is None:
            return f'<div class="card placeholder" {position} style="{box}"></div>'

        card = slot.card
        paragraphs = []
        current: List[str] = []
        for line in message_lines(card.message):
            if line:
                current.append(_e(line))
            elif current:
                paragraphs.append("<br>".join(current))
                current = []
        if current:
            paragraphs.append("<br>".join(current))
        body = "".join(f"<p>{p}</p>" for p in paragraphs)

        return (
            f'<div class="card" {position} style="{box}">'
            f'<div class="header">{_e(self.header)}</div>'
            f'<div class="recipient">Dear {_e(card.recipient_name)},</div>'
            f'<div class="message">{body}</div>'
            f'<div class="signature">'
            f'<div class="signature-text">{_e(self.signature.closing)}</div>'
            f'<div class="name">{_e(self.signature.names)}</div>'
            f"</div>"
            f"</div>"
        )

    def to_html(self) -> str:
        sheets = []
        for page in self.pages:
            inner = "".join(self._card_html(slot) for slot in page.slots)
            sheets.append(f'<div class="sheet" data-page="{page.number}">{inner}</div>')
        return (
            "<!DOCTYPE html>\n"
            '<html><head><meta charset="utf-8">'
            f"<title>{_e(self.header)} cards</title>"
            f"<style>\n{self.stylesheet()}\n</style>"
            "</head><body>"
            + "".join(sheets)
            + "</body></html>"
        )


def chunk(items: Sequence[T], size: int) -> List[List[T]]:
    if size <= 0:
        raise ValueError("chunk size must be positive")
    return [list(items[i : i + size]) for i in range(0, len(items), size)]


def _check_card(position: int, card: Card) -> None:
    if not (card.recipient_name or "").strip():
        raise ValueError(f"Card {position + 1} has no recipient name")
    if not (card.message or "").strip():
        raise ValueError(f"Card {position + 1} has no message")


def compose(
    cards: Iterable[Card],
    template: Union[str, Template, TemplateSpec, None],
    layout: LayoutSpec,
    signature: Optional[Signature] = None,
) -> Document:
    ordered = list(cards)
    if not ordered:
        raise EmptyInput("No cards to compose")
    for position, card in enumerate(ordered):
        _check_card(position, card)

    spec = resolve_template(template)
    per_page = layout.cards_per_page

    pages: List[Page] = []
    for number, group in enumerate(chunk(ordered, per_page), start=1):
        slots: List[Slot] = []
        for index in range(per_page):
            row, col = layout.slot_position(index)
            left, top = layout.slot_origin(index)
            slots.append(
                Slot(
                    index=index,
                    row=row,
                    col=col,
                    left_in=left,
                    top_in=top,
                    width_in=layout.card_width_in,
                    height_in=layout.card_height_in,
                    card=group[index] if index < len(group) else None,
                )
            )
        pages.append(Page(number=number, slots=slots))

    return Document(
        pages=pages,
        template=spec,
        layout=layout,
        signature=signature or Signature.from_config(),
    )
