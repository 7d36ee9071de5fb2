from __future__ import annotations

import csv
import hashlib
import re
from pathlib import Path
from typing import Dict, Iterable, List, Optional

from slugify import slugify

from sqlmodel import select

from .. import config
from ..models import GuestCard, PaymentStatus, Project, ProjectStatus, get_session, init_db
from .compose import Card
from .layout import compute_layout
from .messages import DEFAULT_TONE, FallbackChain, default_message, fill_generated, fill_prewritten
from .templates import resolve_template


REQUIRED_COLUMNS = {"name", "gift"}
OPTIONAL_COLUMNS = {"message"}
MESSAGE_MODES = ("prewritten", "ai", "default")


class CsvFormatError(ValueError):
    pass


def load_rows(csv_path: Path) -> List[Dict[str, str]]:
    """
    Read guest rows keyed by lower-case column name. Name and Gift columns
    are required in any letter case; Message is optional.
    """
    if not csv_path.exists():
        raise FileNotFoundError(f"CSV not found: {csv_path}")
    with csv_path.open("r", encoding="utf-8-sig", newline="") as handle:
        reader = csv.DictReader(handle)
        if reader.fieldnames is None:
            raise CsvFormatError("CSV has no header")
        columns = {str(name).strip().lower(): name for name in reader.fieldnames if name is not None}
        missing = REQUIRED_COLUMNS - set(columns)
        if missing:
            raise CsvFormatError(
                "CSV must have " + " and ".join(f'"{c.title()}"' for c in sorted(missing)) + " columns"
            )
        wanted = REQUIRED_COLUMNS | OPTIONAL_COLUMNS
        rows: List[Dict[str, str]] = []
        for row in reader:
            if not any((value or "").strip() for value in row.values() if isinstance(value, str)):
                continue
            rows.append({key: (row.get(original) or "").strip() for key, original in columns.items() if key in wanted})
    if not rows:
        raise CsvFormatError("CSV file is empty or has no data rows")
    return rows


def rows_to_cards(rows: Iterable[Dict[str, str]]) -> List[Card]:
    cards: List[Card] = []
    for line, row in enumerate(rows, start=2):
        name = " ".join((row.get("name") or "").split())
        if not name:
            raise CsvFormatError(f"Row {line} has no name")
        cards.append(Card(recipient_name=name, gift=row.get("gift") or "", message=row.get("message") or ""))
    return cards


def fill_messages(
    cards: List[Card],
    mode: str = "prewritten",
    tone: str = DEFAULT_TONE,
    chain: Optional[FallbackChain] = None,
    signers: Optional[str] = None,
) -> List[Card]:
    if mode == "prewritten":
        return fill_prewritten(cards)
    if mode == "ai":
        return fill_generated(cards, tone=tone, chain=chain, signers=signers)
    if mode == "default":
        return [c if c.message else Card(c.recipient_name, c.gift, default_message(c.gift)) for c in cards]
    raise ValueError(f"Unknown message mode {mode!r}; expected one of {', '.join(MESSAGE_MODES)}")


def slug_from_title(title: str) -> str:
    slug = slugify(title)
    slug = re.sub(r"[^a-z0-9-]+", "-", slug.lower()).strip("-")
    if not slug:
        slug = hashlib.md5(title.encode("utf-8")).hexdigest()[:12]
    if ".." in slug or "/" in slug or "\\" in slug:
        raise ValueError("Invalid slug generated from title")
    return slug


def _unique_slug(base: str) -> str:
    with get_session() as session:
        taken = set(session.exec(select(Project.slug).where(Project.slug.startswith(base))).all())
    if base not in taken:
        return base
    n = 2
    while f"{base}-{n}" in taken:
        n += 1
    return f"{base}-{n}"


def create_project(
    csv_path: Path,
    title: str,
    template: str = config.DEFAULT_TEMPLATE,
    cards_per_page: int = config.DEFAULT_CARDS_PER_PAGE,
    signers: Optional[str] = None,
    mode: str = "prewritten",
    tone: str = DEFAULT_TONE,
    chain: Optional[FallbackChain] = None,
) -> Project:
    # reject bad densities before anything is stored
    compute_layout(cards_per_page)
    init_db()
    cards = fill_messages(rows_to_cards(load_rows(csv_path)), mode=mode, tone=tone, chain=chain, signers=signers)

    project = Project(
        title=title.strip() or "Thank You Cards",
        slug=_unique_slug(slug_from_title(title or "thank-you-cards")),
        template=resolve_template(template).id.value,
        cards_per_page=cards_per_page,
        signers=signers,
        status=ProjectStatus.DRAFT,
    )
    with get_session() as session:
        session.add(project)
        session.commit()
        session.refresh(project)
        session.add_all(
            GuestCard(
                project_id=project.id,
                recipient_name=card.recipient_name,
                gift=card.gift or None,
                message=card.message,
                sort_order=position,
            )
            for position, card in enumerate(cards)
        )
        session.commit()
    return project


def get_project(slug: str) -> Project:
    init_db()
    with get_session() as session:
        project = session.exec(select(Project).where(Project.slug == slug)).first()
    if project is None:
        raise LookupError(f"Project not found: {slug}")
    return project


def list_projects(
    statuses: Iterable[ProjectStatus],
    payment_status: Optional[PaymentStatus] = None,
) -> List[Project]:
    init_db()
    with get_session() as session:
        statement = select(Project)
        if payment_status is not None:
            statement = statement.where(Project.payment_status == payment_status)
        if statuses:
            statement = statement.where(Project.status.in_(list(statuses)))
        return list(session.exec(statement.order_by(Project.id)))


def load_cards(project: Project, limit: Optional[int] = None) -> List[Card]:
    with get_session() as session:
        statement = (
            select(GuestCard)
            .where(GuestCard.project_id == project.id)
            .order_by(GuestCard.sort_order, GuestCard.id)
        )
        if limit is not None:
            statement = statement.limit(limit)
        rows = session.exec(statement).all()
    return [Card(recipient_name=r.recipient_name, gift=r.gift or "", message=r.message) for r in rows]


def update_card_message(project: Project, index: int, message: str) -> Card:
    """
    Replace the message of the card at guest-list position `index` (0-based).

    The card keeps its place in the list. A built project goes back to DRAFT
    because its PDF no longer matches the cards.
    """
    text = (message or "").strip()
    if not text:
        raise ValueError("Message cannot be empty")

    with get_session() as session:
        rows = session.exec(
            select(GuestCard)
            .where(GuestCard.project_id == project.id)
            .order_by(GuestCard.sort_order, GuestCard.id)
        ).all()
        if not 0 <= index < len(rows):
            raise IndexError(f"Project {project.slug} has no card {index + 1}")
        row = rows[index]
        row.message = text
        session.add(row)
        if project.status != ProjectStatus.DRAFT:
            project.status = ProjectStatus.DRAFT
            project.fail_code = None
            project.fail_detail = None
            session.add(project)
        session.commit()
        session.refresh(row)
        return Card(recipient_name=row.recipient_name, gift=row.gift or "", message=row.message)
