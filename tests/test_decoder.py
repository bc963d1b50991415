"""Symbol decoder tests: module grids, rendered images and failure kinds."""

import numpy as np
import pytest
from PIL import Image, ImageOps

from qrsuite.codec.capability import ErrorCorrectionLevel
from qrsuite.codec.decoder import DecodeResult, decode, decode_matrix, read_format
from qrsuite.codec.encoder import add_error_correction, encode
from qrsuite.codec.errors import DecodeError
from qrsuite.codec.matrix import (
    FORMAT_CODEWORDS,
    apply_mask,
    data_module_order,
    draw_format_bits,
    format_positions,
    function_template,
    place_codewords,
)
from qrsuite.services.qr_service import render_matrix
from qrsuite.services.wifi_payload import WifiCredential, WifiSecurity, build_wifi_payload

WIFI_CREDENTIALS = [
    WifiCredential(ssid="Office", password="secret", security=WifiSecurity.WPA),
    WifiCredential(ssid='My;Net"', password="p:w", security="WPA", hidden=False),
    WifiCredential(ssid="Guest", security="nopass", hidden=True),
    WifiCredential(ssid="Legacy", password="abc123", security="WEP"),
    WifiCredential(ssid="Café ☕ Lounge", password="ünïcødé-pässwörd", security="WPA3"),
]


def _corrupt(modules: np.ndarray, version: int, codeword_indexes: list[int]) -> np.ndarray:
    """Invert every module of the given codewords (in placement order)."""
    grid = np.array(modules)
    rows, cols = data_module_order(version)
    for index in codeword_indexes:
        span = slice(index * 8, index * 8 + 8)
        grid[rows[span], cols[span]] ^= True
    return grid


def _far_format_word() -> int:
    """A 15-bit word more than three bits away from every format word."""
    for word in range(1 << 15):
        if all(bin(word ^ codeword).count("1") > 3 for codeword, _, _ in FORMAT_CODEWORDS):
            return word
    raise AssertionError("No distant format word found")


def test_decode_result_ok() -> None:
    """Ensure ok reflects whether an error is present."""
    assert DecodeResult(text="hi").ok
    assert not DecodeResult.failure(DecodeError.NOT_FOUND).ok


@pytest.mark.parametrize(
    ("payload", "level"),
    [
        ("HELLO WORLD", "Q"),
        ("0123456789" * 5, "H"),
        ("https://example.com/path?q=1", "M"),
        ("Grüße aus Köln ☕", "L"),
        ("x" * 150, "M"),
        ("y" * 600, "L"),
    ],
)
def test_decode_matrix_round_trip(payload: str, level: str) -> None:
    """Ensure encoded grids decode back to the payload."""
    symbol = encode(payload, level)
    result = decode_matrix(symbol.modules)

    assert result.ok
    assert result.text == payload
    assert result.version == symbol.version
    assert result.ec_level is ErrorCorrectionLevel.from_label(level)
    assert result.mask == symbol.mask
    assert result.corrected == 0


def test_decode_matrix_accepts_row_lists() -> None:
    """Ensure plain nested lists of 0/1 are accepted."""
    symbol = encode("rows", "M")
    rows = [[int(value) for value in row] for row in symbol.to_rows()]
    assert decode_matrix(rows).text == "rows"


def test_decode_matrix_corrects_single_block() -> None:
    """Ensure up to three bad codewords of a 1-L symbol are repaired."""
    symbol = encode("block repair", "L", version=1)
    damaged = _corrupt(symbol.modules, 1, [0, 9, 20])

    result = decode_matrix(damaged)
    assert result.text == "block repair"
    assert result.corrected == 3


def test_decode_matrix_reports_uncorrectable_block() -> None:
    """Ensure one codeword past the correction limit is reported."""
    symbol = encode("block repair", "L", version=1)
    damaged = _corrupt(symbol.modules, 1, [0, 9, 20, 25])

    result = decode_matrix(damaged)
    assert not result.ok
    assert result.text is None
    assert result.error is DecodeError.UNCORRECTABLE_BLOCK
    assert result.version == 1


def test_decode_matrix_deinterleaves_blocks() -> None:
    """Ensure corrections are counted per block after de-interleaving."""
    payload = "quartile blocks"
    symbol = encode(payload, "Q", version=5)
    # Interleaved positions 0, 4, 8 ... all belong to the first of four blocks.
    first_block = [4 * i for i in range(9)]
    spread = first_block + [1, 2, 3, 5, 6, 7]

    assert decode_matrix(_corrupt(symbol.modules, 5, spread)).text == payload
    result = decode_matrix(_corrupt(symbol.modules, 5, first_block + [36]))
    assert result.error is DecodeError.UNCORRECTABLE_BLOCK


def test_decode_matrix_survives_damaged_format_copy() -> None:
    """Ensure one readable format copy is enough."""
    symbol = encode("format copy", "M")
    grid = np.array(symbol.modules)
    primary, _ = format_positions(symbol.size)
    for row, col in primary[:5]:
        grid[row, col] ^= True
    assert read_format(grid) == (symbol.ec_level, symbol.mask)
    assert decode_matrix(grid).text == "format copy"


def test_decode_matrix_unreadable_format() -> None:
    """Ensure format words far from every valid code are rejected."""
    symbol = encode("format copy", "M")
    grid = np.array(symbol.modules)
    word = _far_format_word()
    for copy in format_positions(symbol.size):
        for i, (row, col) in enumerate(copy):
            grid[row, col] = bool((word >> i) & 1)

    result = decode_matrix(grid)
    assert result.error is DecodeError.UNREADABLE_FORMAT_INFO
    assert result.text is None


def test_decode_matrix_rejects_bad_bit_stream() -> None:
    """Ensure a block that corrects cleanly but does not parse is reported."""
    level = ErrorCorrectionLevel.L
    data = [0xF0] + [0xEC, 0x11] * 9
    template, function = function_template(1)
    modules = template.copy()
    place_codewords(modules, 1, add_error_correction(data, 1, level))
    modules = apply_mask(modules, function, 0)
    draw_format_bits(modules, level, 0)

    result = decode_matrix(modules)
    assert result.error is DecodeError.CHECKSUM_MISMATCH


def test_decode_matrix_rejects_bad_shapes() -> None:
    """Ensure grids that cannot be a symbol are not found."""
    assert decode_matrix(np.zeros((21, 22), dtype=bool)).error is DecodeError.NOT_FOUND
    assert decode_matrix(np.zeros((22, 22), dtype=bool)).error is DecodeError.NOT_FOUND
    assert decode_matrix(np.zeros(21, dtype=bool)).error is DecodeError.NOT_FOUND
    ragged = [[1, 0], [1]]
    result = decode_matrix(ragged)
    assert result.error is DecodeError.NOT_FOUND
    assert result.text is None


@pytest.mark.parametrize("credential", WIFI_CREDENTIALS)
def test_wifi_round_trip_through_image(credential: WifiCredential) -> None:
    """Ensure rendered Wi-Fi symbols decode to the exact payload."""
    payload = build_wifi_payload(credential)
    image = render_matrix(encode(payload))

    result = decode(image)
    assert result.ok, result.error
    assert result.text == payload


@pytest.mark.parametrize(
    ("payload", "level", "box_size"),
    [
        ("x" * 150, "M", 4),
        ("y" * 600, "L", 3),
        ("0123456789" * 20, "H", 5),
    ],
)
def test_decode_larger_versions(payload: str, level: str, box_size: int) -> None:
    """Ensure symbols with alignment and version blocks are located."""
    symbol = encode(payload, level)
    assert symbol.version >= 7
    result = decode(render_matrix(symbol, box_size=box_size))
    assert result.text == payload
    assert result.version == symbol.version


def test_decode_numpy_frames() -> None:
    """Ensure grayscale, RGB and RGBA arrays are accepted."""
    image = render_matrix(encode("numpy frame"), box_size=6)
    rgb = np.asarray(image)
    gray = np.asarray(image.convert("L"))
    rgba = np.asarray(image.convert("RGBA"))

    for frame in (rgb, gray, rgba, gray[:, :, None]):
        assert decode(frame).text == "numpy frame"


def test_decode_transformed_images() -> None:
    """Ensure rotation, scaling, mirroring and uneven lighting are tolerated."""
    payload = "WIFI:T:WPA;S:Office;P:secret;H:false;;"
    image = render_matrix(encode(payload), box_size=8)

    variants = [
        image.rotate(90, expand=True),
        image.rotate(180),
        image.rotate(10, resample=Image.Resampling.BICUBIC, expand=True, fillcolor="white"),
        image.resize((333, 333), Image.Resampling.BILINEAR),
        ImageOps.mirror(image),
    ]
    gray = np.asarray(image.convert("L"), dtype=np.float64)
    lighting = np.linspace(0.7, 1.0, gray.shape[1])[None, :]
    variants.append((gray * lighting).astype(np.uint8))

    for variant in variants:
        result = decode(variant)
        assert result.text == payload


def test_decode_symbol_inside_larger_scene() -> None:
    """Ensure a symbol offset inside a bigger frame is found."""
    symbol_image = render_matrix(encode("scene"), box_size=5)
    scene = Image.new("RGB", (600, 400), (200, 200, 200))
    scene.paste(symbol_image, (320, 90))
    assert decode(scene).text == "scene"


def test_decode_without_symbol() -> None:
    """Ensure frames without a symbol report NOT_FOUND and no text."""
    rng = np.random.default_rng(7)
    frames = [
        Image.new("RGB", (200, 200), "white"),
        rng.integers(0, 256, size=(240, 240), dtype=np.uint8),
        np.tile(np.linspace(0, 255, 320, dtype=np.uint8), (240, 1)),
        np.zeros((10, 10), dtype=np.uint8),
        np.zeros(400, dtype=np.uint8),
        np.zeros((50, 50, 2), dtype=np.uint8),
    ]
    for frame in frames:
        result = decode(frame)
        assert result.error is DecodeError.NOT_FOUND
        assert result.text is None


def test_decode_rejects_non_image_types() -> None:
    """Ensure frames that are not images at all raise TypeError."""
    try:
        decode("not an image")  # type: ignore[arg-type]
        raise AssertionError("Expected TypeError for a string frame")
    except TypeError:
        assert True
