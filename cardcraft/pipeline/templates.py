from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Tuple, Union


logger = logging.getLogger(__name__)

ROLES: Tuple[str, ...] = ("header", "recipient", "message", "signature", "name")

SERIF = "serif"
SANS = "sans"
SCRIPT = "script"

CSS_FAMILIES: Dict[str, str] = {
    SERIF: "'Cormorant Garamond', Georgia, serif",
    SANS: "'Inter', Helvetica, Arial, sans-serif",
    SCRIPT: "'Playfair Display', Georgia, serif",
}


class InvalidTemplate(LookupError):
    pass


class Template(str, Enum):
    CLASSIC = "classic"
    MODERN = "modern"
    ROMANTIC = "romantic"
    BOTANICAL = "botanical"
    VINTAGE = "vintage"
    CHAMPAGNE = "champagne"
    RUSTIC = "rustic"
    WATERCOLOR = "watercolor"
    FORMAL = "formal"
    MINIMAL = "minimal"


FALLBACK_TEMPLATE = Template.CLASSIC


@dataclass(frozen=True)
class RoleStyle:
    family: str = SERIF
    size_pt: float = 12.0
    color: str = "#3D3D3D"
    italic: bool = False
    uppercase: bool = False
    letter_spacing_pt: float = 0.0
    align: str = "center"  # center | left | justify

    def css(self, scale: float = 1.0) -> str:
        parts = [
            f"font-family: {CSS_FAMILIES.get(self.family, CSS_FAMILIES[SERIF])}",
            f"font-size: {self.size_pt * scale:.1f}pt",
            f"color: {self.color}",
            f"text-align: {self.align}",
        ]
        if self.italic:
            parts.append("font-style: italic")
        if self.uppercase:
            parts.append("text-transform: uppercase")
        if self.letter_spacing_pt:
            parts.append(f"letter-spacing: {self.letter_spacing_pt:.1f}pt")
        return "; ".join(parts) + ";"


@dataclass(frozen=True)
class CardStyle:
    background: str = "#FFFFFF"
    gradient_to: Optional[str] = None
    border_color: str = "#E5E5E5"
    border_width_pt: float = 1.0
    border_kind: str = "solid"  # solid | double | dashed | inset | none

    def css(self) -> str:
        if self.gradient_to:
            background = f"background: linear-gradient(180deg, {self.background} 0%, {self.gradient_to} 100%)"
        else:
            background = f"background: {self.background}"
        if self.border_kind == "none":
            border = "border: none"
        elif self.border_kind == "inset":
            border = (
                f"border: {self.border_width_pt:.1f}pt solid {self.border_color}; "
                f"outline: 1pt solid {self.border_color}; outline-offset: -6pt"
            )
        else:
            border = f"border: {self.border_width_pt:.1f}pt {self.border_kind} {self.border_color}"
        return f"{background}; {border};"


@dataclass(frozen=True)
class TemplateSpec:
    id: Template
    display_name: str
    card: CardStyle
    roles: Dict[str, RoleStyle] = field(default_factory=dict)

    def role(self, name: str) -> RoleStyle:
        return self.roles.get(name) or _BASE_ROLES[name]

    def to_css(self, scale: float = 1.0) -> str:
        rules = [f".card {{ {self.card.css()} }}"]
        for name in ROLES:
            rules.append(f".{name} {{ {self.role(name).css(scale)} }}")
        return "\n".join(rules)


_BASE_ROLES: Dict[str, RoleStyle] = {
    "header": RoleStyle(family=SCRIPT, size_pt=28, color="#5C4A3D"),
    "recipient": RoleStyle(family=SERIF, size_pt=12, color="#4A3F35"),
    "message": RoleStyle(family=SERIF, size_pt=10, color="#3D3D3D", align="justify"),
    "signature": RoleStyle(family=SERIF, size_pt=9, color="#6B5A4A", italic=True),
    "name": RoleStyle(family=SCRIPT, size_pt=16, color="#5C4A3D"),
}


def _roles(**overrides: RoleStyle) -> Dict[str, RoleStyle]:
    roles = dict(_BASE_ROLES)
    roles.update(overrides)
    return roles


def _sans(role: str, **kwargs) -> RoleStyle:
    base = _BASE_ROLES[role]
    values = {
        "family": SANS,
        "size_pt": base.size_pt,
        "color": base.color,
        "italic": False,
        "uppercase": base.uppercase,
        "letter_spacing_pt": base.letter_spacing_pt,
        "align": base.align,
    }
    values.update(kwargs)
    return RoleStyle(**values)


TEMPLATE_SPECS: Dict[Template, TemplateSpec] = {
    Template.CLASSIC: TemplateSpec(
        id=Template.CLASSIC,
        display_name="Classic Elegance",
        card=CardStyle(background="#FEFEFE", border_color="#C9B8A8", border_width_pt=3, border_kind="double"),
        roles=_roles(),
    ),
    Template.MODERN: TemplateSpec(
        id=Template.MODERN,
        display_name="Modern Minimal",
        card=CardStyle(background="#FFFFFF", border_color="#E0E0E0", border_width_pt=1),
        roles=_roles(
            header=_sans("header", size_pt=18, color="#2D2D2D", uppercase=True, letter_spacing_pt=2),
            recipient=_sans("recipient", size_pt=9, color="#5A5A5A", uppercase=True, letter_spacing_pt=1),
            message=_sans("message"),
            signature=_sans("signature", size_pt=8, color="#7A7A7A"),
            name=RoleStyle(family=SCRIPT, size_pt=16, color="#4A4A4A"),
        ),
    ),
    Template.ROMANTIC: TemplateSpec(
        id=Template.ROMANTIC,
        display_name="Romantic Blush",
        card=CardStyle(background="#FFF5F2", gradient_to="#F9EAE5", border_color="#E8D4CC"),
        roles=_roles(
            header=RoleStyle(family=SCRIPT, size_pt=28, color="#C9A89A", italic=True),
            recipient=RoleStyle(family=SERIF, size_pt=12, color="#8B6B5A"),
            message=RoleStyle(family=SERIF, size_pt=10, color="#5C4A3D", align="justify"),
            signature=RoleStyle(family=SERIF, size_pt=9, color="#A89080", italic=True),
            name=RoleStyle(family=SCRIPT, size_pt=16, color="#C9A89A"),
        ),
    ),
    Template.BOTANICAL: TemplateSpec(
        id=Template.BOTANICAL,
        display_name="Botanical",
        card=CardStyle(background="#F5F8F5", border_color="#B8C4B8", border_width_pt=2),
        roles=_roles(
            header=RoleStyle(family=SCRIPT, size_pt=28, color="#4F6B4F"),
            name=RoleStyle(family=SCRIPT, size_pt=16, color="#4F6B4F"),
        ),
    ),
    Template.VINTAGE: TemplateSpec(
        id=Template.VINTAGE,
        display_name="Vintage Charm",
        card=CardStyle(background="#FAF8F5", border_color="#C9B8A8", border_width_pt=2),
        roles=_roles(),
    ),
    Template.CHAMPAGNE: TemplateSpec(
        id=Template.CHAMPAGNE,
        display_name="Champagne Luxe",
        card=CardStyle(background="#FAF9F7", gradient_to="#F0ECE5", border_color="#B8A090", border_width_pt=3),
        roles=_roles(
            header=RoleStyle(family=SCRIPT, size_pt=28, color="#8C7360"),
            name=RoleStyle(family=SCRIPT, size_pt=16, color="#8C7360"),
        ),
    ),
    Template.RUSTIC: TemplateSpec(
        id=Template.RUSTIC,
        display_name="Rustic",
        card=CardStyle(background="#FDFCFA", border_color="#B8A090", border_width_pt=2, border_kind="dashed"),
        roles=_roles(),
    ),
    Template.WATERCOLOR: TemplateSpec(
        id=Template.WATERCOLOR,
        display_name="Watercolor",
        card=CardStyle(background="#FFF9F7", gradient_to="#FDF5F0", border_kind="none"),
        roles=_roles(
            header=RoleStyle(family=SCRIPT, size_pt=28, color="#C9A89A"),
            name=RoleStyle(family=SCRIPT, size_pt=16, color="#C9A89A"),
        ),
    ),
    Template.FORMAL: TemplateSpec(
        id=Template.FORMAL,
        display_name="Formal",
        card=CardStyle(background="#FFFFFF", border_color="#D4C5B5", border_width_pt=2, border_kind="inset"),
        roles=_roles(),
    ),
    Template.MINIMAL: TemplateSpec(
        id=Template.MINIMAL,
        display_name="Minimal",
        card=CardStyle(background="#FFFFFF", border_color="#E5E5E5", border_width_pt=1),
        roles=_roles(
            header=_sans("header", size_pt=18, uppercase=True, letter_spacing_pt=2),
            recipient=_sans("recipient"),
            message=_sans("message"),
            signature=_sans("signature"),
        ),
    ),
}


def _check_coverage() -> None:
    missing = [t.value for t in Template if t not in TEMPLATE_SPECS]
    if missing:
        raise InvalidTemplate(f"Templates without styles: {', '.join(missing)}")


_check_coverage()


def get_template(template: Template) -> TemplateSpec:
    return TEMPLATE_SPECS[template]


def resolve_template(template_id: Union[str, Template, TemplateSpec, None]) -> TemplateSpec:
    if isinstance(template_id, TemplateSpec):
        return template_id
    if isinstance(template_id, Template):
        return TEMPLATE_SPECS[template_id]
    key = str(template_id or "").strip().lower()
    try:
        return TEMPLATE_SPECS[Template(key)]
    except ValueError:
        logger.warning("Unknown template %r, using %s", template_id, FALLBACK_TEMPLATE.value)
    spec = TEMPLATE_SPECS.get(FALLBACK_TEMPLATE)
    if spec is None:
        raise InvalidTemplate(f"Fallback template {FALLBACK_TEMPLATE.value} is not defined")
    return spec


def list_templates() -> List[Tuple[str, str]]:
    return [(t.value, TEMPLATE_SPECS[t].display_name) for t in Template]
