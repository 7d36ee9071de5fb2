from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

import typer

from . import config
from .models import PaymentStatus, ProjectStatus, reset_engine
from .payments import PaymentFailed, StripeGateway
from .pipeline.ingest import (
    MESSAGE_MODES,
    create_project,
    get_project,
    list_projects,
    load_cards,
    update_card_message,
)
from .pipeline.layout import InvalidConfiguration, compute_layout
from .pipeline.messages import DEFAULT_TONE
from .pipeline.run import PdfGenerationFailed, confirm_payment, preview_project, run_pipeline
from .pipeline.templates import list_templates
from .storage import project_artifacts

app = typer.Typer(help="Personalised thank-you card printing")


def _use_out(out: Optional[Path]) -> None:
    if out:
        config.set_out_dir(out)
        reset_engine()


def _report(results: dict[str, list[str]]) -> None:
    typer.echo(f"READY: {len(results['READY'])}")
    for slug in results["READY"]:
        typer.echo(f"READY: {slug} {project_artifacts(get_project(slug)).get('pdf', '')}")
    typer.echo(f"FAILED: {len(results['FAILED'])}")
    for slug in results["FAILED"]:
        typer.echo(f"FAILED: {slug}")
    for slug in results.get("SKIPPED", []):
        typer.echo(f"UNPAID: {slug}")


@app.callback()
def main(verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging")) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else config.LOG_LEVEL,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@app.command()
def templates() -> None:
    for template_id, display_name in list_templates():
        typer.echo(f"{template_id:<12} {display_name}")


@app.command()
def layout(cards_per_page: int = typer.Option(config.DEFAULT_CARDS_PER_PAGE, "--cards-per-page", "-n")) -> None:
    try:
        spec = compute_layout(cards_per_page)
    except InvalidConfiguration as exc:
        raise typer.BadParameter(str(exc)) from exc
    typer.echo(f"grid: {spec.grid_rows} x {spec.grid_cols}")
    typer.echo(f"card: {spec.card_width_in}in x {spec.card_height_in}in")
    typer.echo(f"margins: {spec.margin_x_in}in / {spec.margin_y_in}in, gap {spec.gap_in}in")
    typer.echo(f"type: {spec.font_tier.value}")


@app.command()
def ingest(
    csv: Path = typer.Option(..., "--csv", help="CSV with Name, Gift and optional Message columns"),
    title: str = typer.Option("Thank You Cards", "--title", help="Project title"),
    template: str = typer.Option(config.DEFAULT_TEMPLATE, "--template", help="Template id"),
    cards_per_page: int = typer.Option(config.DEFAULT_CARDS_PER_PAGE, "--cards-per-page", "-n"),
    signers: Optional[str] = typer.Option(None, "--signers", help="Names in the signature block"),
    messages: str = typer.Option("prewritten", "--messages", help="/".join(MESSAGE_MODES)),
    tone: str = typer.Option(DEFAULT_TONE, "--tone", help="Tone for generated messages"),
    out: Optional[Path] = typer.Option(None, "--out", help="Output directory"),
) -> None:
    _use_out(out)
    try:
        project = create_project(
            csv,
            title=title,
            template=template,
            cards_per_page=cards_per_page,
            signers=signers,
            mode=messages,
            tone=tone,
        )
    except (ValueError, FileNotFoundError) as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1)
    typer.echo(f"Created project {project.slug} ({project.template}, {project.cards_per_page} per page)")


@app.command()
def cards(
    project: str = typer.Option(..., "--project", help="Project slug"),
    out: Optional[Path] = typer.Option(None, "--out", help="Output directory"),
) -> None:
    _use_out(out)
    try:
        found = get_project(project)
    except LookupError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1)
    for number, card in enumerate(load_cards(found), start=1):
        typer.echo(f"{number:>3}. {card.recipient_name} ({card.gift or '-'}): {card.message}")


@app.command()
def edit(
    project: str = typer.Option(..., "--project", help="Project slug"),
    card: int = typer.Option(..., "--card", help="Card number as listed by `cards`"),
    message: str = typer.Option(..., "--message", help="New message text"),
    out: Optional[Path] = typer.Option(None, "--out", help="Output directory"),
) -> None:
    _use_out(out)
    try:
        updated = update_card_message(get_project(project), card - 1, message)
    except (LookupError, ValueError) as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1)
    typer.echo(f"Updated card {card} for {updated.recipient_name}")


@app.command()
def preview(
    project: str = typer.Option(..., "--project", help="Project slug"),
    out: Optional[Path] = typer.Option(None, "--out", help="Output directory"),
) -> None:
    _use_out(out)
    try:
        path = preview_project(get_project(project))
    except LookupError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1)
    except PdfGenerationFailed as exc:
        typer.echo(str(exc), err=True)
        raise typer.Exit(code=1)
    typer.echo(f"Preview: {path}")


@app.command()
def pay(
    project: str = typer.Option(..., "--project", help="Project slug"),
    payment_intent: str = typer.Option(..., "--payment-intent", help="Stripe PaymentIntent id"),
    out: Optional[Path] = typer.Option(None, "--out", help="Output directory"),
) -> None:
    _use_out(out)
    try:
        paid = confirm_payment(get_project(project), payment_intent, StripeGateway())
    except (LookupError, PaymentFailed) as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1)
    _report(run_pipeline([paid]))


@app.command()
def build(
    project: Optional[str] = typer.Option(None, "--project", help="Only this project"),
    out: Optional[Path] = typer.Option(None, "--out", help="Output directory"),
) -> None:
    _use_out(out)
    if project:
        try:
            projects = [get_project(project)]
        except LookupError as exc:
            typer.echo(f"Error: {exc}", err=True)
            raise typer.Exit(code=1)
    else:
        projects = list_projects([ProjectStatus.DRAFT], payment_status=PaymentStatus.PAID)
    if not projects:
        typer.echo("No projects to process")
        return
    _report(run_pipeline(projects))


@app.command()
def retry(
    out: Optional[Path] = typer.Option(None, "--out", help="Output directory"),
) -> None:
    _use_out(out)
    projects = list_projects([ProjectStatus.FAILED], payment_status=PaymentStatus.PAID)
    if not projects:
        typer.echo("No projects to retry")
        return
    _report(run_pipeline(projects))


if __name__ == "__main__":
    app()
