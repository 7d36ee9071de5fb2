from __future__ import annotations

from pathlib import Path
from typing import Dict, Iterable

from sqlmodel import select

from . import config
from .models import Artifact, Project, get_session


ARTIFACT_NAMES = {
    "pdf": "cards.pdf",
    "html": "cards.html",
    "preview": "preview.png",
    "error": "error.log",
}


def project_dir(slug: str) -> Path:
    return config.OUT_DIR / slug


def artifact_path(slug: str, artifact_type: str, directory: Path | None = None) -> Path:
    """File for an artifact, inside `directory` (a work dir) or the project's output dir."""
    return (directory or project_dir(slug)) / ARTIFACT_NAMES[artifact_type]


def write_error_log(slug: str, message: str) -> Path:
    path = artifact_path(slug, "error")
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(message, encoding="utf-8")
    return path


def record_artifacts(project: Project, artifacts: Iterable[tuple[str, Path]]) -> None:
    # a rebuild replaces the project's files, so its rows are replaced too
    with get_session() as session:
        for stale in session.exec(select(Artifact).where(Artifact.project_id == project.id)).all():
            session.delete(stale)
        for artifact_type, path in artifacts:
            session.add(
                Artifact(
                    project_id=project.id,
                    type=artifact_type,
                    path=str(path.relative_to(config.OUT_DIR)),
                )
            )
        session.commit()


def project_artifacts(project: Project) -> Dict[str, Path]:
    with get_session() as session:
        rows = session.exec(select(Artifact).where(Artifact.project_id == project.id).order_by(Artifact.id))
        return {row.type: config.OUT_DIR / row.path for row in rows}
