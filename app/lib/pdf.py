# app/lib/pdf.py
import os
from typing import Tuple

from PIL import Image
from reportlab.pdfgen import canvas

from app import logger

log = logger.get_logger(__name__)

PRINT_DPI = 200
# back cover + front cover side by side, 13.5in x 10.5in
COVER_SPREAD_PT = (972, 756)


def append_image_page(pdf_path: str, image_path: str, *, size_px: Tuple[int, int], dpi: int = PRINT_DPI) -> None:
    """Append one image as a new page, resized to `size_px`; creates the PDF when missing."""
    with Image.open(image_path) as src:
        img = src.convert("RGB")
    if img.size != size_px:
        img = img.resize(size_px, Image.LANCZOS)
    append = os.path.exists(pdf_path) and os.path.getsize(pdf_path) > 0
    img.save(pdf_path, "PDF", resolution=float(dpi), append=append)


def make_cover_spread(front_path: str, back_path: str, pdf_path: str) -> str:
    """One landscape page: back cover on the left half, front cover on the right half."""
    w, h = COVER_SPREAD_PT
    half = w / 2
    log.info(f"building cover spread: {pdf_path}")
    c = canvas.Canvas(pdf_path, pagesize=COVER_SPREAD_PT)
    for path, x0 in ((back_path, 0), (front_path, half)):
        with Image.open(path) as img:
            img_ratio = img.width / img.height
        if half / h > img_ratio:
            ih = h
            iw = ih * img_ratio
        else:
            iw = half
            ih = iw / img_ratio
        x = x0 + (half - iw) / 2
        y = (h - ih) / 2
        c.drawImage(path, x, y, iw, ih)
    c.showPage()
    c.save()
    return pdf_path
