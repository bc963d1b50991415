"""Export helpers for rendered QR images."""

from __future__ import annotations

import base64
import io

from PIL import Image

from qrsuite.constants import DOWNLOAD_FALLBACK_NAME
from qrsuite.services.wifi_payload import WifiCredential


def image_to_png_bytes(image: Image.Image) -> bytes:
    """Encode an image as PNG bytes."""
    buffer = io.BytesIO()
    image.save(buffer, format="PNG")
    return buffer.getvalue()


def image_to_data_url(image: Image.Image) -> str:
    """Encode an image as a ``data:image/png;base64`` URL."""
    encoded = base64.b64encode(image_to_png_bytes(image)).decode("ascii")
    return f"data:image/png;base64,{encoded}"


def sanitize_filename(value: str) -> str:
    """Return a filesystem-safe filename from a label."""
    return "".join(c if c.isalnum() or c in {"-", "_"} else "_" for c in value)


def suggested_filename(credential: WifiCredential) -> str:
    """Download name for a credential's QR image."""
    name = sanitize_filename(credential.ssid.strip()) or DOWNLOAD_FALLBACK_NAME
    return f"wifi-{name}-qr.png"
