from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Dict, Tuple


POINTS_PER_INCH = 72.0

LETTER_WIDTH_IN = 8.5
LETTER_HEIGHT_IN = 11.0
MIN_MARGIN_IN = 0.25

# float slack when summing inch values
EPSILON = 1e-6


class InvalidConfiguration(ValueError):
    pass


class FontTier(str, Enum):
    LARGE = "large"
    MEDIUM = "medium"
    STANDARD = "standard"


FONT_SCALE: Dict[FontTier, float] = {
    FontTier.LARGE: 1.5,
    FontTier.MEDIUM: 1.2,
    FontTier.STANDARD: 1.0,
}


@dataclass(frozen=True)
class _GridRule:
    cols: int
    rows: int
    card_width_in: float
    card_height_in: float
    gap_in: float
    tier: FontTier


# 4-up cards fill the printable area inside the 0.25in minimum margin,
# so their size comes from the page rather than from card stock.
_QUAD_GAP_IN = 0.2
_RULES: Dict[int, _GridRule] = {
    1: _GridRule(cols=1, rows=1, card_width_in=7.0, card_height_in=9.0, gap_in=0.0, tier=FontTier.LARGE),
    2: _GridRule(cols=1, rows=2, card_width_in=7.5, card_height_in=4.5, gap_in=0.25, tier=FontTier.MEDIUM),
    4: _GridRule(
        cols=2,
        rows=2,
        card_width_in=round((LETTER_WIDTH_IN - 2 * MIN_MARGIN_IN - _QUAD_GAP_IN) / 2, 6),
        card_height_in=round((LETTER_HEIGHT_IN - 2 * MIN_MARGIN_IN - _QUAD_GAP_IN) / 2, 6),
        gap_in=_QUAD_GAP_IN,
        tier=FontTier.STANDARD,
    ),
}


@dataclass(frozen=True)
class LayoutSpec:
    cards_per_page: int
    card_width_in: float
    card_height_in: float
    grid_cols: int
    grid_rows: int
    page_margin_in: float
    gap_in: float
    margin_x_in: float
    margin_y_in: float
    font_tier: FontTier
    page_width_in: float = LETTER_WIDTH_IN
    page_height_in: float = LETTER_HEIGHT_IN

    @property
    def slots_per_page(self) -> int:
        return self.grid_cols * self.grid_rows

    @property
    def grid_width_in(self) -> float:
        return self.grid_cols * self.card_width_in + (self.grid_cols - 1) * self.gap_in

    @property
    def grid_height_in(self) -> float:
        return self.grid_rows * self.card_height_in + (self.grid_rows - 1) * self.gap_in

    @property
    def font_scale(self) -> float:
        return FONT_SCALE[self.font_tier]

    @property
    def page_size_points(self) -> Tuple[float, float]:
        return self.page_width_in * POINTS_PER_INCH, self.page_height_in * POINTS_PER_INCH

    def slot_position(self, index: int) -> Tuple[int, int]:
        """Row-major (row, col) of a page-local slot index."""
        if not 0 <= index < self.slots_per_page:
            raise IndexError(f"slot {index} outside a {self.grid_rows}x{self.grid_cols} grid")
        return index // self.grid_cols, index % self.grid_cols

    def slot_origin(self, index: int) -> Tuple[float, float]:
        """Top-left corner (left, top) of a slot in inches, measured from the page's top-left."""
        row, col = self.slot_position(index)
        left = self.margin_x_in + col * (self.card_width_in + self.gap_in)
        top = self.margin_y_in + row * (self.card_height_in + self.gap_in)
        return round(left, 6), round(top, 6)


def to_points(inches: float) -> float:
    return inches * POINTS_PER_INCH


def fits_page(layout: LayoutSpec) -> bool:
    if layout.grid_cols * layout.grid_rows < layout.cards_per_page:
        return False
    if layout.page_margin_in < MIN_MARGIN_IN - EPSILON:
        return False
    width = layout.grid_width_in + 2 * layout.page_margin_in
    height = layout.grid_height_in + 2 * layout.page_margin_in
    if width > layout.page_width_in + EPSILON or height > layout.page_height_in + EPSILON:
        return False
    # centering offsets must keep the grid on the sheet as well
    right = layout.margin_x_in + layout.grid_width_in
    bottom = layout.margin_y_in + layout.grid_height_in
    return (
        right <= layout.page_width_in - MIN_MARGIN_IN + EPSILON
        and bottom <= layout.page_height_in - MIN_MARGIN_IN + EPSILON
    )


def font_scale_tier(cards_per_page: int) -> FontTier:
    return _rule_for(cards_per_page).tier


def _rule_for(cards_per_page: int) -> _GridRule:
    if isinstance(cards_per_page, bool) or not isinstance(cards_per_page, int):
        raise InvalidConfiguration(f"cards per page must be an integer, got {cards_per_page!r}")
    rule = _RULES.get(cards_per_page)
    if rule is None:
        allowed = ", ".join(str(k) for k in sorted(_RULES))
        raise InvalidConfiguration(f"cards per page must be one of {allowed}, got {cards_per_page}")
    return rule


def compute_layout(cards_per_page: int) -> LayoutSpec:
    rule = _rule_for(cards_per_page)

    grid_w = rule.cols * rule.card_width_in + (rule.cols - 1) * rule.gap_in
    grid_h = rule.rows * rule.card_height_in + (rule.rows - 1) * rule.gap_in
    margin_x = round((LETTER_WIDTH_IN - grid_w) / 2, 6)
    margin_y = round((LETTER_HEIGHT_IN - grid_h) / 2, 6)

    layout = LayoutSpec(
        cards_per_page=cards_per_page,
        card_width_in=rule.card_width_in,
        card_height_in=rule.card_height_in,
        grid_cols=rule.cols,
        grid_rows=rule.rows,
        page_margin_in=min(margin_x, margin_y),
        gap_in=rule.gap_in,
        margin_x_in=margin_x,
        margin_y_in=margin_y,
        font_tier=rule.tier,
    )
    if not fits_page(layout):
        raise InvalidConfiguration(
            f"{cards_per_page}-up grid of {rule.card_width_in}x{rule.card_height_in}in cards "
            f"does not fit a {LETTER_WIDTH_IN}x{LETTER_HEIGHT_IN}in page"
        )
    return layout
