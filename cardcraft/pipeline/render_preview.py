from __future__ import annotations

from pathlib import Path

import fitz  # PyMuPDF

from ..storage import artifact_path


def count_pdf_pages(data: bytes) -> int:
    with fitz.open(stream=data, filetype="pdf") as doc:
        return doc.page_count


def _render_page_to_png(doc: fitz.Document, page_index: int, out_path: Path, min_px: int = 1600) -> None:
    page = doc.load_page(page_index)

    # scale so the short side of the image is at least min_px
    rect = page.rect
    short_side = min(rect.width, rect.height)
    zoom = max(2.0, min_px / float(short_side))
    mat = fitz.Matrix(zoom, zoom)

    pix = page.get_pixmap(matrix=mat, alpha=False)
    out_path.parent.mkdir(parents=True, exist_ok=True)
    pix.save(str(out_path))


def render_preview(
    slug: str,
    pdf_path: Path,
    page_index: int = 0,
    directory: Path | None = None,
) -> Path:
    out_path = artifact_path(slug, "preview", directory=directory)
    with fitz.open(pdf_path) as doc:
        _render_page_to_png(doc, page_index, out_path)
    return out_path
