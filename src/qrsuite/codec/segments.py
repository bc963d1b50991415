"""Segment modes: classification, data-bit encoding and bit-stream parsing."""

from __future__ import annotations

from qrsuite.codec.capability import EncodingMode
from qrsuite.codec.errors import UnsupportedCharacterError

ALPHANUMERIC_CHARSET = "0123456789ABCDEFGHIJKLMNOPQRSTUVWXYZ $%*+-./:"
_ALPHANUMERIC_INDEX = {char: index for index, char in enumerate(ALPHANUMERIC_CHARSET)}

_MODE_TERMINATOR = 0b0000
_MODE_STRUCTURED_APPEND = 0b0011
_MODE_FNC1_FIRST = 0b0101
_MODE_ECI = 0b0111
_MODE_KANJI = 0b1000
_MODE_FNC1_SECOND = 0b1001
_KANJI_COUNT_BITS = (8, 10, 12)

_ECI_CHARSETS = {
    1: "iso-8859-1",
    3: "iso-8859-1",
    4: "iso-8859-2",
    7: "iso-8859-5",
    9: "iso-8859-7",
    20: "shift_jis",
    22: "cp1251",
    26: "utf-8",
    27: "ascii",
}


class BitBuffer:
    """Append-only sequence of bits."""

    def __init__(self) -> None:
        self._bits: list[int] = []

    def __len__(self) -> int:
        return len(self._bits)

    def append_bits(self, value: int, length: int) -> None:
        if length < 0 or value >> length:
            raise ValueError(f"Value {value} does not fit in {length} bits")
        self._bits.extend((value >> shift) & 1 for shift in range(length - 1, -1, -1))

    def to_bytes(self) -> list[int]:
        """Pack into bytes; the length must be a multiple of 8."""
        if len(self._bits) % 8:
            raise ValueError("Bit buffer is not byte aligned")
        return [
            int("".join(str(bit) for bit in self._bits[i:i + 8]), 2)
            for i in range(0, len(self._bits), 8)
        ]


class BitReader:
    """Sequential reader over a byte string."""

    def __init__(self, data: bytes | list[int]) -> None:
        self._data = bytes(data)
        self._position = 0

    @property
    def remaining(self) -> int:
        return len(self._data) * 8 - self._position

    def read(self, length: int) -> int:
        if length > self.remaining:
            raise ValueError("Bit stream ended inside a segment")
        value = 0
        for _ in range(length):
            byte = self._data[self._position >> 3]
            value = (value << 1) | ((byte >> (7 - (self._position & 7))) & 1)
            self._position += 1
        return value


def is_numeric(text: str) -> bool:
    return all("0" <= char <= "9" for char in text)


def is_alphanumeric(text: str) -> bool:
    return all(char in _ALPHANUMERIC_INDEX for char in text)


def classify(payload: str | bytes) -> EncodingMode:
    """Pick the most compact single mode for a payload."""
    if isinstance(payload, bytes):
        return EncodingMode.BYTE
    if is_numeric(payload):
        return EncodingMode.NUMERIC
    if is_alphanumeric(payload):
        return EncodingMode.ALPHANUMERIC
    return EncodingMode.BYTE


def prepare_payload(
    payload: str | bytes, mode: EncodingMode | None = None
) -> tuple[EncodingMode, str | bytes]:
    """Resolve the mode and return the data to encode in it.

    Byte mode always yields ``bytes`` (text is encoded as UTF-8); numeric and
    alphanumeric modes yield ``str``.
    """
    if mode is None:
        mode = classify(payload)
    if mode is EncodingMode.BYTE:
        if isinstance(payload, bytes):
            return mode, payload
        try:
            return mode, payload.encode("utf-8")
        except UnicodeEncodeError as exc:
            raise UnsupportedCharacterError(
                f"Payload cannot be encoded as UTF-8: {exc.reason}"
            ) from exc

    text = payload.decode("ascii", errors="replace") if isinstance(payload, bytes) else payload
    valid = is_numeric(text) if mode is EncodingMode.NUMERIC else is_alphanumeric(text)
    if not valid:
        raise UnsupportedCharacterError(
            f"Payload contains characters outside the {mode.name.lower()} character set"
        )
    return mode, text


def append_segment(buffer: BitBuffer, mode: EncodingMode, data: str | bytes, version: int) -> None:
    """Append mode indicator, count indicator and data bits for one segment."""
    buffer.append_bits(mode.indicator, 4)
    buffer.append_bits(len(data), mode.count_bits(version))
    if mode is EncodingMode.NUMERIC:
        for start in range(0, len(data), 3):
            chunk = data[start:start + 3]
            buffer.append_bits(int(chunk), len(chunk) * 3 + 1)
    elif mode is EncodingMode.ALPHANUMERIC:
        for start in range(0, len(data) - 1, 2):
            value = _ALPHANUMERIC_INDEX[data[start]] * 45 + _ALPHANUMERIC_INDEX[data[start + 1]]
            buffer.append_bits(value, 11)
        if len(data) % 2:
            buffer.append_bits(_ALPHANUMERIC_INDEX[data[-1]], 6)
    else:
        for byte in data:
            buffer.append_bits(byte, 8)


def _decode_bytes(raw: bytes, charset: str | None) -> str:
    if charset is not None:
        return raw.decode(charset)
    try:
        return raw.decode("utf-8")
    except UnicodeDecodeError:
        return raw.decode("iso-8859-1")


def _read_eci(reader: BitReader) -> int:
    first = reader.read(8)
    if first & 0x80 == 0:
        return first
    if first & 0xC0 == 0x80:
        return ((first & 0x3F) << 8) | reader.read(8)
    if first & 0xE0 == 0xC0:
        return ((first & 0x1F) << 16) | reader.read(16)
    raise ValueError("Invalid ECI designator")


def _count_bits_index(version: int) -> int:
    return (version + 7) // 17


def parse_segments(data: bytes | list[int], version: int) -> str:
    """Parse the data codewords of a symbol back into text.

    Raises ``ValueError`` when the bit stream is inconsistent.
    """
    reader = BitReader(data)
    parts: list[str] = []
    charset: str | None = None
    while reader.remaining >= 4:
        indicator = reader.read(4)
        if indicator == _MODE_TERMINATOR:
            break
        if indicator == _MODE_ECI:
            designator = _read_eci(reader)
            charset = _ECI_CHARSETS.get(designator)
            if charset is None:
                raise ValueError(f"Unsupported ECI designator {designator}")
            continue
        if indicator == _MODE_STRUCTURED_APPEND:
            reader.read(16)
            continue
        if indicator == _MODE_FNC1_FIRST:
            continue
        if indicator == _MODE_FNC1_SECOND:
            reader.read(8)
            continue
        if indicator == _MODE_KANJI:
            count = reader.read(_KANJI_COUNT_BITS[_count_bits_index(version)])
            raw = bytearray()
            for _ in range(count):
                value = reader.read(13)
                assembled = ((value // 0xC0) << 8) | (value % 0xC0)
                assembled += 0x8140 if assembled < 0x1F00 else 0xC140
                raw.extend(assembled.to_bytes(2, "big"))
            parts.append(bytes(raw).decode("shift_jis"))
            continue

        mode = _mode_for_indicator(indicator)
        count = reader.read(mode.count_bits(version))
        if mode is EncodingMode.NUMERIC:
            digits = []
            for start in range(0, count, 3):
                width = min(3, count - start)
                value = reader.read(width * 3 + 1)
                if value >= 10 ** width:
                    raise ValueError("Numeric group out of range")
                digits.append(str(value).zfill(width))
            parts.append("".join(digits))
        elif mode is EncodingMode.ALPHANUMERIC:
            chars = []
            for _ in range(count // 2):
                value = reader.read(11)
                if value >= 45 * 45:
                    raise ValueError("Alphanumeric pair out of range")
                chars.append(ALPHANUMERIC_CHARSET[value // 45])
                chars.append(ALPHANUMERIC_CHARSET[value % 45])
            if count % 2:
                value = reader.read(6)
                if value >= 45:
                    raise ValueError("Alphanumeric character out of range")
                chars.append(ALPHANUMERIC_CHARSET[value])
            parts.append("".join(chars))
        else:
            raw = bytes(reader.read(8) for _ in range(count))
            parts.append(_decode_bytes(raw, charset))
    return "".join(parts)


def _mode_for_indicator(indicator: int) -> EncodingMode:
    for mode in EncodingMode:
        if mode.indicator == indicator:
            return mode
    raise ValueError(f"Unknown mode indicator {indicator:04b}")
