from __future__ import annotations

import math
from html.parser import HTMLParser
from typing import List

import pytest

from cardcraft.pipeline.compose import Card, EmptyInput, Signature, chunk, compose, message_lines
from cardcraft.pipeline.layout import compute_layout
from cardcraft.pipeline.templates import Template, resolve_template


def _cards(n: int) -> List[Card]:
    return [Card(f"Guest {i}", f"Gift {i}", f"Thanks for coming, guest {i}!") for i in range(n)]


class _TextCollector(HTMLParser):
    """Collects the decoded text of every element carrying a given class."""

    def __init__(self, css_class: str) -> None:
        super().__init__()
        self.css_class = css_class
        self.depth = 0
        self.texts: List[str] = []
        self.sheets = 0
        self.placeholders = 0

    def handle_starttag(self, tag, attrs) -> None:  # noqa: ANN001
        classes = (dict(attrs).get("class") or "").split()
        if "sheet" in classes:
            self.sheets += 1
        if "placeholder" in classes:
            self.placeholders += 1
        if tag == "br":
            return
        if self.depth:
            self.depth += 1
        elif self.css_class in classes:
            self.depth = 1
            self.texts.append("")

    def handle_endtag(self, tag) -> None:  # noqa: ANN001
        if self.depth:
            self.depth -= 1

    def handle_data(self, data) -> None:  # noqa: ANN001
        if self.depth:
            self.texts[-1] += data


@pytest.mark.parametrize("count", [1, 2, 3, 4, 5, 7, 8, 9, 13])
@pytest.mark.parametrize("cards_per_page", [1, 2, 4])
def test_page_count_and_order(count: int, cards_per_page: int) -> None:
    cards = _cards(count)
    document = compose(cards, "classic", compute_layout(cards_per_page))
    assert len(document.pages) == math.ceil(count / cards_per_page)
    assert list(document.cards()) == cards
    for page in document.pages[:-1]:
        assert not page.placeholders
    assert document.placeholder_count == len(document.pages) * cards_per_page - count


def test_single_card_on_quad_sheet() -> None:
    document = compose(_cards(1), "classic", compute_layout(4))
    assert len(document.pages) == 1
    page = document.pages[0]
    assert len(page.cards) == 1
    assert len(page.placeholders) == 3
    assert all(slot.card is None for slot in page.placeholders)


def test_exact_multiple_has_no_placeholders() -> None:
    document = compose(_cards(8), "modern", compute_layout(4))
    assert len(document.pages) == 2
    assert document.placeholder_count == 0


def test_two_guest_scenario() -> None:
    layout = compute_layout(4)
    cards = [Card("Ann", "Vase", "Thanks!"), Card("Bob", "", "Cheers")]
    document = compose(cards, "classic", layout)

    assert len(document.pages) == 1
    slots = document.pages[0].slots
    assert [(s.row, s.col) for s in slots] == [(0, 0), (0, 1), (1, 0), (1, 1)]
    assert slots[0].card == cards[0]
    assert slots[1].card == cards[1]
    assert slots[2].is_placeholder and slots[3].is_placeholder

    assert slots[0].left_in == pytest.approx(layout.margin_x_in)
    assert slots[0].top_in == pytest.approx(layout.margin_y_in)
    assert slots[1].left_in == pytest.approx(layout.margin_x_in + layout.card_width_in + layout.gap_in)
    assert slots[2].top_in == pytest.approx(layout.margin_y_in + layout.card_height_in + layout.gap_in)
    assert all(s.width_in == layout.card_width_in and s.height_in == layout.card_height_in for s in slots)
    assert document.template.id is Template.CLASSIC


def test_compose_is_deterministic() -> None:
    layout = compute_layout(2)
    cards = _cards(5)
    signature = Signature(closing="Love,", names="Sam and Alex")
    first = compose(cards, "romantic", layout, signature)
    second = compose(cards, "romantic", layout, signature)
    assert first == second
    assert first.to_html() == second.to_html()


def test_empty_input_is_rejected() -> None:
    with pytest.raises(EmptyInput):
        compose([], "classic", compute_layout(4))


def test_cards_without_message_are_rejected() -> None:
    with pytest.raises(ValueError):
        compose([Card("Ann", "Vase", "   ")], "classic", compute_layout(4))


def test_unknown_template_falls_back_to_classic() -> None:
    document = compose(_cards(2), "nonexistent", compute_layout(4))
    assert document.template == resolve_template(Template.CLASSIC)
    assert "double" in document.stylesheet()


def test_markup_escapes_guest_text() -> None:
    tricky = "O'Brien & <Sons>"
    message = 'He said "<b>hi</b>" & left'
    document = compose([Card(tricky, "Bowl", message)], "classic", compute_layout(4))
    markup = document.to_html()

    assert tricky not in markup
    assert "<Sons>" not in markup
    assert "<b>hi</b>" not in markup

    recipients = _TextCollector("recipient")
    recipients.feed(markup)
    assert recipients.texts == [f"Dear {tricky},"]

    messages = _TextCollector("message")
    messages.feed(markup)
    assert messages.texts == [message]


def test_markup_has_one_sheet_per_page_and_signature() -> None:
    document = compose(_cards(5), "modern", compute_layout(4), Signature("Warmly,", "Jo & Lee"))
    markup = document.to_html()
    collector = _TextCollector("name")
    collector.feed(markup)
    assert collector.sheets == 2
    assert collector.placeholders == 3
    assert collector.texts == ["Jo & Lee"] * 5
    assert "Thank You" in markup
    assert "size: 8.5in 11.0in" in markup


def test_message_lines_normalise_breaks() -> None:
    text = "Dear friend,\r\n\r\n\r\nThank  you\rso much.\n\n"
    assert message_lines(text) == ["Dear friend,", "", "Thank you", "so much."]


def test_chunk_preserves_order() -> None:
    assert chunk([1, 2, 3, 4, 5], 2) == [[1, 2], [3, 4], [5]]
    with pytest.raises(ValueError):
        chunk([1], 0)


def test_card_from_mapping() -> None:
    card = Card.from_mapping({"name": "  Ann ", "gift": None, "message": "Hi"})
    assert card == Card("Ann", "", "Hi")
