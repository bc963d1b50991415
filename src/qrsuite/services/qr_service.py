"""QR image generation helpers."""

from __future__ import annotations

import base64
import binascii
import io

import numpy as np
from PIL import Image

from qrsuite.codec.capability import ErrorCorrectionLevel
from qrsuite.codec.encoder import encode
from qrsuite.codec.matrix import SymbolMatrix
from qrsuite.constants import (
    CENTER_IMAGE_SIZE,
    DEFAULT_EC_LEVEL,
    DEFAULT_QR_BACKGROUND_COLOR,
    DEFAULT_QR_BORDER,
    DEFAULT_QR_BOX_SIZE,
    DEFAULT_QR_FILL_COLOR,
    DEFAULT_QR_SIZE,
)
from qrsuite.services.wifi_payload import WifiCredential, build_wifi_payload


def render_matrix(
    matrix: SymbolMatrix,
    box_size: int = DEFAULT_QR_BOX_SIZE,
    border: int = DEFAULT_QR_BORDER,
    fill_color: str = DEFAULT_QR_FILL_COLOR,
    back_color: str = DEFAULT_QR_BACKGROUND_COLOR,
) -> Image.Image:
    """Draw a symbol with ``box_size`` pixels per module and a quiet zone."""
    if box_size < 1 or border < 0:
        raise ValueError("Box size must be positive and border non-negative.")
    modules = np.pad(matrix.modules, border, constant_values=False)
    side = modules.shape[0] * box_size
    mask = Image.fromarray(np.where(modules, 255, 0).astype(np.uint8)).resize(
        (side, side), Image.Resampling.NEAREST
    )
    image = Image.new("RGB", (side, side), back_color)
    image.paste(fill_color, (0, 0, side, side), mask)
    return image


def _embed_center_image(image: Image.Image, center_image_data: str) -> Image.Image:
    try:
        image_bytes = base64.b64decode(center_image_data, validate=True)
    except binascii.Error as exc:
        raise ValueError("Center image data is not valid base64.") from exc

    try:
        center_img = Image.open(io.BytesIO(image_bytes)).convert("RGBA")
    except Exception as exc:
        raise ValueError("Center image data is not a valid image.") from exc

    center_img = center_img.resize(
        (CENTER_IMAGE_SIZE, CENTER_IMAGE_SIZE), Image.Resampling.LANCZOS
    )
    qr_width, qr_height = image.size
    pos_x = (qr_width - CENTER_IMAGE_SIZE) // 2
    pos_y = (qr_height - CENTER_IMAGE_SIZE) // 2

    image = image.convert("RGBA")
    image.paste(center_img, (pos_x, pos_y), center_img)
    return image.convert("RGB")


def generate_qr_image(
    payload: str | bytes,
    size: int = DEFAULT_QR_SIZE,
    center_image_data: str | None = None,
    ec_level: ErrorCorrectionLevel | str | None = None,
) -> Image.Image:
    """Generate a QR image for the provided payload with optional center image.

    A center image covers modules, so the EC level defaults to H when one is
    given and to the configured default otherwise.
    """
    if ec_level is None:
        ec_level = ErrorCorrectionLevel.H if center_image_data else DEFAULT_EC_LEVEL
    image = render_matrix(encode(payload, ec_level))

    if size and image.size != (size, size):
        image = image.resize((size, size), Image.Resampling.LANCZOS)

    if center_image_data:
        image = _embed_center_image(image, center_image_data)

    return image


def generate_wifi_qr_image(
    credential: WifiCredential,
    size: int = DEFAULT_QR_SIZE,
    center_image_data: str | None = None,
    ec_level: ErrorCorrectionLevel | str | None = None,
) -> Image.Image:
    """Generate a scannable Wi-Fi join QR image for a credential."""
    return generate_qr_image(
        build_wifi_payload(credential),
        size=size,
        center_image_data=center_image_data,
        ec_level=ec_level,
    )


def save_qr_image(image: Image.Image, file_path: str) -> None:
    """Persist a QR image to disk."""
    image.save(file_path)
