from __future__ import annotations
import base64
import hashlib
import os
import re
from typing import Optional, Tuple

import requests
from PIL import Image

from app import logger
from app.lib.gcs_inventory import download_gcs_object_to_file

log = logger.get_logger(__name__)

_DATAURL_RE = re.compile(r"^data:(image/(?:png|jpeg|jpg));base64,(.*)$", re.IGNORECASE | re.DOTALL)

def sniff_image_type(data: bytes) -> Optional[str]:
    if data.startswith(b"\x89PNG\r\n\x1a\n"):
        return "image/png"
    if data.startswith(b"\xff\xd8"):
        return "image/jpeg"
    return None

def decode_image_b64(image_b64: str) -> tuple[bytes, str]:
    """
    Returns (bytes, content_type). Supports 'data:image/png;base64,...' or raw base64.
    Only PNG and JPEG are accepted.
    """
    if not image_b64 or not image_b64.strip():
        raise ValueError("empty base64")
    m = _DATAURL_RE.match(image_b64.strip())
    payload = m.group(2) if m else image_b64.strip()
    # normalise whitespace and padding
    payload = "".join(payload.split())
    payload += "=" * ((-len(payload)) % 4)
    try:
        data = base64.b64decode(payload)
    except ValueError as e:
        raise ValueError(f"invalid base64: {e}")
    content_type = sniff_image_type(data)
    if content_type is None:
        raise ValueError("Unsupported image format; only PNG or JPEG")
    return data, content_type

def _safe_name(s: str) -> str:
    h = hashlib.sha1(s.encode("utf-8")).hexdigest()[:12]
    base = re.sub(r"[^A-Za-z0-9_.\-]+", "_", os.path.basename(s))[:80] or "asset"
    return f"{h}_{base}"

def resolve_asset_to_path(asset: str, cache_dir: str) -> str:
    """
    Make a stored asset available locally and return its path.
    Accepts gs://bucket/key, http(s) urls, or an existing local path.
    Downloads are cached in `cache_dir` by name.
    """
    asset = (asset or "").strip()
    if not asset:
        raise ValueError("empty asset path")
    if os.path.exists(asset):
        return asset

    os.makedirs(cache_dir, exist_ok=True)
    local = os.path.join(cache_dir, _safe_name(asset))
    if os.path.exists(local) and os.path.getsize(local) > 0:
        return local

    if asset.startswith("gs://"):
        download_gcs_object_to_file(asset, local)
    elif asset.startswith("http://") or asset.startswith("https://"):
        r = requests.get(asset, timeout=30)
        r.raise_for_status()
        with open(local, "wb") as f:
            f.write(r.content)
    else:
        raise ValueError(f"Invalid asset path: {asset}")

    if not os.path.exists(local) or os.path.getsize(local) < 16:
        raise ValueError(f"Invalid image data for {asset}")
    return local

def image_size(path: str) -> Tuple[int, int]:
    with Image.open(path) as im:
        return im.size

def build_edit_mask(
    source_path: str,
    out_path: str,
    *,
    region: Tuple[float, float, float, float],
) -> str:
    """
    Write an RGBA mask the size of `source_path`: opaque everywhere except the
    region (x, y, w, h given as fractions of width/height), which is cleared so
    only that band is repainted.
    """
    w, h = image_size(source_path)
    rx, ry, rw, rh = region
    box = (
        int(round(rx * w)),
        int(round(ry * h)),
        int(round((rx + rw) * w)),
        int(round((ry + rh) * h)),
    )
    mask = Image.new("RGBA", (w, h), (0, 0, 0, 255))
    mask.paste((0, 0, 0, 0), box)
    os.makedirs(os.path.dirname(out_path) or ".", exist_ok=True)
    mask.save(out_path, format="PNG")
    return out_path
