from __future__ import annotations

from pathlib import Path
import logging
import shutil
from typing import Iterable, List, Optional, Sequence

from .. import config
from ..models import PaymentStatus, Project, ProjectStatus, get_session, init_db
from ..payments import PaymentFailed, PaymentGateway
from ..storage import artifact_path, record_artifacts, write_error_log
from .compose import Card, Document, EmptyInput, Signature, compose
from .ingest import load_cards
from .layout import InvalidConfiguration, compute_layout
from .render_pdf import IncompleteRender, RenderError, Renderer, ReportLabRenderer
from .render_preview import count_pdf_pages, render_preview


logger = logging.getLogger(__name__)


class PdfGenerationFailed(RuntimeError):
    """Carries the user-facing message; `kind` names the underlying failure for logs."""

    def __init__(self, kind: str, detail: str = "") -> None:
        super().__init__(config.USER_FAILURE_MESSAGE)
        self.kind = kind
        self.detail = detail


FAIL_CODES = {
    InvalidConfiguration: "INVALID_CONFIGURATION",
    EmptyInput: "EMPTY_INPUT",
    PdfGenerationFailed: "RENDER_FAILED",
}


def _fail_code(exc: Exception) -> str:
    for exc_type, code in FAIL_CODES.items():
        if isinstance(exc, exc_type):
            return code
    return "PIPELINE_ERROR"


def signature_for(project: Project) -> Signature:
    return Signature(closing=config.SIGNATURE_LINE, names=project.signers or config.SIGNERS)


def build_document(
    cards: Sequence[Card],
    template: str,
    cards_per_page: int,
    signature: Optional[Signature] = None,
) -> Document:
    layout = compute_layout(cards_per_page)
    return compose(cards, template, layout, signature)


def render_with_retry(renderer: Renderer, document: Document, attempts: Optional[int] = None) -> bytes:
    total = config.RENDER_ATTEMPTS if attempts is None else attempts
    if total < 1:
        raise ValueError(f"attempts must be at least 1, got {total}")
    last: Optional[RenderError] = None
    for attempt in range(1, total + 1):
        try:
            data = renderer.render(document, document.layout.page_size_points)
            try:
                pages = count_pdf_pages(data)
            except Exception as exc:
                raise IncompleteRender(f"Renderer returned an unreadable PDF: {exc}") from exc
            if pages != len(document.pages):
                raise IncompleteRender(f"Expected {len(document.pages)} pages, got {pages}")
            return data
        except RenderError as exc:
            last = exc
            logger.warning("Render attempt %d/%d failed (%s): %s", attempt, total, type(exc).__name__, exc)
    logger.error("PDF generation failed after %d attempts: %s", total, type(last).__name__)
    raise PdfGenerationFailed(type(last).__name__, str(last)) from last


def _prepare_temp_dir(slug: str) -> Path:
    temp_dir = config.OUT_DIR / f"{slug}.tmp"
    if temp_dir.exists():
        shutil.rmtree(temp_dir)
    temp_dir.mkdir(parents=True, exist_ok=True)
    return temp_dir


def _finalize_artifacts(
    temp_dir: Path,
    final_dir: Path,
    artifacts: List[tuple[str, Path]],
) -> List[tuple[str, Path]]:
    if final_dir.exists():
        shutil.rmtree(final_dir)
    temp_dir.replace(final_dir)
    finalized: List[tuple[str, Path]] = []
    for artifact_type, path in artifacts:
        finalized.append((artifact_type, final_dir / path.relative_to(temp_dir)))
    return finalized


def write_document(
    slug: str,
    document: Document,
    renderer: Renderer,
    out_dir: Path,
) -> List[tuple[str, Path]]:
    data = render_with_retry(renderer, document)

    pdf_path = artifact_path(slug, "pdf", directory=out_dir)
    pdf_path.write_bytes(data)

    html_path = artifact_path(slug, "html", directory=out_dir)
    html_path.write_text(document.to_html(), encoding="utf-8")

    preview_path = render_preview(slug, pdf_path, directory=out_dir)
    return [("pdf", pdf_path), ("html", html_path), ("preview", preview_path)]


def generate_project_pdf(project: Project, renderer: Optional[Renderer] = None) -> List[tuple[str, Path]]:
    document = build_document(
        load_cards(project),
        project.template,
        project.cards_per_page,
        signature_for(project),
    )
    temp_dir = _prepare_temp_dir(project.slug)
    try:
        if renderer is None:
            with ReportLabRenderer() as engine:
                artifacts = write_document(project.slug, document, engine, temp_dir)
        else:
            artifacts = write_document(project.slug, document, renderer, temp_dir)
    except Exception:
        shutil.rmtree(temp_dir, ignore_errors=True)
        raise
    logger.info(
        "Rendered %s: %d cards on %d pages (%d placeholders)",
        project.slug,
        document.card_count,
        len(document.pages),
        document.placeholder_count,
    )
    return _finalize_artifacts(temp_dir, config.OUT_DIR / project.slug, artifacts)


def preview_project(project: Project, renderer: Optional[Renderer] = None) -> Path:
    """Render the first sheet only, whatever the payment state."""
    cards = load_cards(project, limit=config.PREVIEW_CARD_LIMIT)
    document = build_document(cards, project.template, project.cards_per_page, signature_for(project))
    preview_dir = _prepare_temp_dir(f"{project.slug}.preview")
    try:
        if renderer is None:
            with ReportLabRenderer() as engine:
                data = render_with_retry(engine, document)
        else:
            data = render_with_retry(renderer, document)
        pdf_path = preview_dir / "preview.pdf"
        pdf_path.write_bytes(data)
        image = render_preview(project.slug, pdf_path, directory=preview_dir)
        final = artifact_path(project.slug, "preview")
        final.parent.mkdir(parents=True, exist_ok=True)
        image.replace(final)
    finally:
        shutil.rmtree(preview_dir, ignore_errors=True)
    return final


def confirm_payment(project: Project, intent_id: str, gateway: PaymentGateway) -> Project:
    if not gateway.is_paid(intent_id):
        raise PaymentFailed("Payment not successful")
    init_db()
    with get_session() as session:
        project.payment_status = PaymentStatus.PAID
        project.payment_id = intent_id
        session.add(project)
        session.commit()
        session.refresh(project)
    logger.info("Project %s paid with %s", project.slug, intent_id)
    return project


def run_pipeline(projects: Iterable[Project], renderer: Optional[Renderer] = None) -> dict[str, list[str]]:
    init_db()
    results: dict[str, list[str]] = {"READY": [], "FAILED": [], "SKIPPED": []}
    owned = renderer is None
    engine = renderer or ReportLabRenderer()
    try:
        with get_session() as session:
            for project in projects:
                if project.payment_status != PaymentStatus.PAID:
                    logger.info("Skipping unpaid project %s", project.slug)
                    results["SKIPPED"].append(project.slug)
                    continue
                artifacts: List[tuple[str, Path]] = []
                error: Optional[Exception] = None
                try:
                    artifacts = generate_project_pdf(project, renderer=engine)
                except Exception as exc:
                    logger.exception("Pipeline error for %s (%s)", project.slug, type(exc).__name__)
                    error = exc

                if error is None:
                    project.status = ProjectStatus.READY
                    project.fail_code = None
                    project.fail_detail = None
                else:
                    project.status = ProjectStatus.FAILED
                    project.fail_code = _fail_code(error)
                    project.fail_detail = getattr(error, "detail", "") or str(error)
                session.add(project)
                session.commit()
                session.refresh(project)

                if error is None:
                    record_artifacts(project, artifacts)
                    results["READY"].append(project.slug)
                else:
                    write_error_log(project.slug, f"{project.fail_code}: {project.fail_detail}")
                    results["FAILED"].append(project.slug)
    finally:
        if owned:
            engine.close()
    return results
