"""Rendering of pairing codes into scannable QR images."""

from __future__ import annotations

import base64
import io
from collections.abc import Callable

import qrcode
import qrcode.constants

PairingRenderer = Callable[[str], str]


def render_qr_data_url(code: str, *, box_size: int = 10, border: int = 4) -> str:
    """Render ``code`` as a PNG QR code and return it as a data URL."""
    qr = qrcode.QRCode(
        error_correction=qrcode.constants.ERROR_CORRECT_M,
        box_size=box_size,
        border=border,
    )
    qr.add_data(code)
    qr.make(fit=True)
    img = qr.make_image(fill_color="#000000", back_color="#FFFFFF").convert("RGB")
    buf = io.BytesIO()
    img.save(buf, format="PNG")
    encoded = base64.b64encode(buf.getvalue()).decode("ascii")
    return f"data:image/png;base64,{encoded}"


def decode_data_url(data_url: str) -> tuple[bytes, str]:
    """Split a base64 data URL into raw bytes and its content type.

    Raises:
        ValueError: If the value is not a base64 data URL.
    """
    header, sep, payload = data_url.partition(",")
    if not sep or not header.startswith("data:") or not header.endswith(";base64"):
        raise ValueError("Not a base64 data URL")
    content_type = header[len("data:") : -len(";base64")] or "application/octet-stream"
    return base64.b64decode(payload), content_type
