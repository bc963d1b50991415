"""Interoperability checks against the qrcode package and OpenCV."""

import cv2
import numpy as np
import pytest
import qrcode
from qrcode.constants import ERROR_CORRECT_H, ERROR_CORRECT_L, ERROR_CORRECT_M, ERROR_CORRECT_Q
from qrcode.image.pil import PilImage
from qrcode.util import MODE_8BIT_BYTE, QRData

from qrsuite.codec.capability import EncodingMode
from qrsuite.codec.decoder import decode
from qrsuite.codec.encoder import encode, encode_with_mask
from qrsuite.services.qr_service import generate_wifi_qr_image, render_matrix
from qrsuite.services.wifi_payload import WifiCredential, build_wifi_payload

QRCODE_LEVELS = {
    "L": ERROR_CORRECT_L,
    "M": ERROR_CORRECT_M,
    "Q": ERROR_CORRECT_Q,
    "H": ERROR_CORRECT_H,
}


def _decode_with_opencv(image: np.ndarray) -> str:
    """Decode a QR code with OpenCV's detector."""
    detector = cv2.QRCodeDetector()
    data, _, _ = detector.detectAndDecode(image)  # type: ignore[arg-type]
    if not data:
        raise ValueError("No QR code found in image")
    return data


def _reference_matrix(payload: str, level: str, version: int, mask: int) -> np.ndarray:
    qr = qrcode.QRCode(
        version=version,
        error_correction=QRCODE_LEVELS[level],
        border=0,
        mask_pattern=mask,
    )
    qr.add_data(QRData(payload.encode("utf-8"), mode=MODE_8BIT_BYTE))
    qr.make(fit=False)
    return np.array(qr.get_matrix(), dtype=bool)


@pytest.mark.parametrize(
    ("payload", "level", "mask"),
    [
        ("WIFI:T:WPA;S:Office;P:secret;H:false;;", "M", 0),
        ("hello", "L", 3),
        ("Grüße ☕", "H", 5),
        ("a somewhat longer payload that needs several blocks " * 4, "Q", 6),
        ("version info " * 20, "L", 7),
    ],
)
def test_matrix_matches_qrcode_package(payload: str, level: str, mask: int) -> None:
    """Ensure byte-mode symbols are module-for-module identical to qrcode's."""
    symbol = encode_with_mask(payload, level, mask, mode=EncodingMode.BYTE)
    expected = _reference_matrix(payload, level, symbol.version, mask)
    assert expected.shape == symbol.modules.shape
    assert np.array_equal(symbol.modules, expected)


@pytest.mark.parametrize("level", ["L", "M", "Q", "H"])
def test_decode_images_from_qrcode_package(level: str) -> None:
    """Ensure symbols rendered by the qrcode package decode here."""
    payload = "WIFI:T:WEP;S:Lab;P:abc123;H:true;;"
    qr = qrcode.QRCode(error_correction=QRCODE_LEVELS[level], box_size=6, border=4)
    qr.add_data(payload)
    qr.make(fit=True)
    image = qr.make_image(image_factory=PilImage).get_image().convert("RGB")

    result = decode(image)
    assert result.text == payload


@pytest.mark.parametrize(
    "credential",
    [
        WifiCredential(ssid="Office", password="secret", security="WPA"),
        WifiCredential(ssid='My;Net"', password="p:w", security="WPA"),
        WifiCredential(ssid="Guest", security="nopass", hidden=True),
    ],
)
def test_opencv_reads_rendered_wifi_codes(credential: WifiCredential) -> None:
    """Ensure OpenCV decodes the rendered Wi-Fi images to the payload."""
    image = generate_wifi_qr_image(credential, size=400)
    bgr = cv2.cvtColor(np.asarray(image), cv2.COLOR_RGB2BGR)
    assert _decode_with_opencv(bgr) == build_wifi_payload(credential)


def test_opencv_reads_larger_versions() -> None:
    """Ensure OpenCV decodes a symbol that carries version information."""
    payload = "https://example.com/" + "a" * 180
    symbol = encode(payload, "M")
    assert symbol.version >= 7
    image = np.asarray(render_matrix(symbol, box_size=5).convert("L"))
    assert _decode_with_opencv(image) == payload
