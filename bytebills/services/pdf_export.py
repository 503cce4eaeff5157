from __future__ import annotations

import io
import logging
import os
import re
import tempfile
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Union

from reportlab.lib.units import mm
from reportlab.pdfgen import canvas

from bytebills.models.document import BillingDocument
from bytebills.services.layout import PageSet, RectOp, TextOp

log = logging.getLogger(__name__)

FILE_LABELS = {"invoice": "Invoice", "receipt": "Receipt", "delivery_note": "DeliveryNote"}


# ---------- Formats ----------

def _slug(text: str) -> str:
    text = (text or "").strip()
    text = re.sub(r'[\\/:*?"<>|\n\r\t]', "_", text)
    text = re.sub(r"\s+", "-", text)
    return text or "document"


def document_filename(document: BillingDocument) -> str:
    """Invoice-INV-2501-0042.pdf"""
    label = FILE_LABELS.get(document.kind, "Document")  # type: ignore[attr-defined]
    return f"{label}-{_slug(document.document_number)}.pdf"


# ---------- PDF ----------

def _draw_text(c: canvas.Canvas, op: TextOp, page_height: float) -> None:
    c.setFont(op.font, op.size)
    x, y = op.x * mm, (page_height - op.y) * mm
    if op.align == "right":
        c.drawRightString(x, y, op.text)
    elif op.align == "center":
        c.drawCentredString(x, y, op.text)
    else:
        c.drawString(x, y, op.text)


def _draw_rect(c: canvas.Canvas, op: RectOp, page_height: float) -> None:
    r, g, b = op.fill
    c.setFillColorRGB(r / 255, g / 255, b / 255)
    c.rect(op.x * mm, (page_height - op.y - op.height) * mm, op.width * mm, op.height * mm, stroke=0, fill=1)
    c.setFillColorRGB(0, 0, 0)


def export_to_file(page_set: PageSet) -> bytes:
    """Serialize a laid-out page set to PDF bytes. Content is drawn as is."""
    buffer = io.BytesIO()
    c = canvas.Canvas(buffer, pagesize=(page_set.width * mm, page_set.height * mm))
    c.setTitle(page_set.title)
    c.setCreator("ByteBills")
    for page in page_set.pages:
        # fills first so text is never hidden under a stripe
        for op in page.ops:
            if isinstance(op, RectOp):
                _draw_rect(c, op, page_set.height)
        for op in page.ops:
            if isinstance(op, TextOp):
                _draw_text(c, op, page_set.height)
        c.showPage()
    c.save()
    return buffer.getvalue()


# ---------- Download ----------

@contextmanager
def _staging_file(target_dir: Path) -> Iterator[Path]:
    fd, name = tempfile.mkstemp(prefix=".download-", suffix=".part", dir=str(target_dir))
    os.close(fd)
    tmp = Path(name)
    try:
        yield tmp
    finally:
        tmp.unlink(missing_ok=True)


def trigger_download(buffer: bytes, filename: str, target_dir: Union[str, os.PathLike]) -> Path:
    """
    Save ``buffer`` as ``target_dir/filename``.

    The bytes are staged in a temporary file next to the target and moved
    into place in one step; the staging file is removed on every exit path,
    so a failed download never leaves a partial file behind.
    """
    if not buffer:
        raise ValueError("Refusing to save an empty document")
    target = Path(target_dir)
    target.mkdir(parents=True, exist_ok=True)
    out_path = target / Path(filename).name
    with _staging_file(target) as tmp:
        tmp.write_bytes(buffer)
        os.replace(tmp, out_path)
    log.info("Saved %s (%d bytes)", out_path, len(buffer))
    return out_path
