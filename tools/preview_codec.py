#!/usr/bin/env python3
"""
preview_codec.py - Buffer encodings and value rendering for previews

Decoding side:
    - hex text (whitespace, '_' separators and a 0x prefix tolerated)
    - base64 (standard alphabet, empty input yields empty bytes)
    - string / bin / bytes pass through unchanged

Numeric side:
    - hex text parses directly as an integer and tolerates an odd digit
      count ("042" == 0x042), little endian only applies to whole bytes
    - base64 and raw bytes are interpreted per endianness (first 8 bytes)
    - string and bin text parse as numbers (binary autodetected)

Rendering:
    dig/dec -> "66", hex -> "0x42", bin -> "1000010",
    enum -> table label or decimal, flags -> "A, B" or hex
"""

import base64
import binascii
import string
from dataclasses import dataclass
from typing import Dict, Mapping

from preview_config import BufferType, PreviewFormat
from preview_expression import parse_numeric_string


PREVIEW_LIMIT = 32
MAX_INTEGER_BYTES = 8

_HEX_DIGITS = frozenset(string.hexdigits)
_PRINTABLE = frozenset(range(0x20, 0x7f))


class CodecError(ValueError):
    """Raw data could not be decoded or interpreted."""


@dataclass(frozen=True)
class HexValue:
    value: int
    digit_count: int


def _normalize_hex(text: str, allow_empty: bool = False) -> str:
    trimmed = text.strip()
    if trimmed[:2].lower() == '0x':
        trimmed = trimmed[2:]

    digits = []
    for ch in trimmed:
        if ch.isspace() or ch == '_':
            continue
        if ch not in _HEX_DIGITS:
            raise CodecError(f"Invalid hex digit '{ch}' at position {len(digits) + 1}.")
        digits.append(ch)

    if not digits and not allow_empty:
        raise CodecError("Hex string is empty.")
    return ''.join(digits)


def parse_hex(text: str) -> HexValue:
    """Parse hex text as an unsigned 64-bit integer, odd digit counts allowed."""
    digits = _normalize_hex(text)
    if len(digits) > 16:
        raise CodecError(f"Hex value too large ({len(digits)} digits).")
    return HexValue(int(digits, 16), len(digits))


def decode_hex_bytes(text: str) -> bytes:
    """Decode hex text to bytes; an odd digit count is an error."""
    digits = _normalize_hex(text, allow_empty=True)
    if len(digits) % 2:
        raise CodecError(f"Odd number of hex digits ({len(digits)}).")
    return bytes.fromhex(digits)


def decode_base64(data: bytes) -> bytes:
    cleaned = b''.join(data.split())
    if not cleaned:
        return b''
    try:
        return base64.b64decode(cleaned, validate=True)
    except (binascii.Error, ValueError):
        raise CodecError("Failed to decode base64.")


def decode_buffer(data: bytes, buffer_type: BufferType) -> bytes:
    """Turn raw text bytes into canonical bytes per buffer type."""
    if buffer_type == BufferType.HEX_STRING:
        return decode_hex_bytes(data.decode('latin-1'))
    if buffer_type == BufferType.BASE64:
        return decode_base64(data)
    return data


def parse_integer(data: bytes, little: bool = False) -> int:
    """Interpret the first (up to) 8 bytes as an unsigned integer."""
    if not data:
        raise CodecError("No data to interpret as an integer.")
    return int.from_bytes(data[:MAX_INTEGER_BYTES], 'little' if little else 'big')


def numeric_value(raw: bytes, buffer_type: BufferType, little: bool = False) -> int:
    """
    Extract an unsigned integer from a raw slice or captured text.

    ``raw`` is the data before buffer decoding; each buffer type has its
    own numeric reading (see module docstring).
    """
    if buffer_type == BufferType.HEX_STRING:
        text = raw.decode('latin-1')
        parsed = parse_hex(text)
        if little and parsed.digit_count % 2 == 0:
            return parse_integer(decode_hex_bytes(text), little=True)
        return parsed.value

    if buffer_type == BufferType.BASE64:
        return parse_integer(decode_base64(raw), little)

    if buffer_type in (BufferType.STRING, BufferType.BIN):
        try:
            return parse_numeric_string(raw.decode('utf-8'))
        except UnicodeDecodeError:
            raise CodecError("Text is not valid UTF-8.")
        except ValueError as e:
            raise CodecError(f"Invalid number: {e}.")

    return parse_integer(raw, little)


def bytes_to_text(data: bytes) -> str:
    return data.decode('utf-8', errors='replace')


def format_enum(value: int, enum_map: Mapping[str, str]) -> str:
    """Label of the first declared key equal to value, else decimal."""
    for key, label in enum_map.items():
        try:
            if parse_numeric_string(key) == value:
                return label
        except ValueError:
            continue
    return str(value)


def format_flags(value: int, flag_map: Mapping[str, str]) -> str:
    """Labels of every key sharing a bit with value, else hex of value."""
    names = []
    seen = set()
    for key, label in flag_map.items():
        try:
            mask = parse_numeric_string(key)
        except ValueError:
            continue
        if mask in seen:
            continue
        seen.add(mask)
        if value & mask:
            names.append(label)
    if not names:
        return f"0x{value:x}"
    return ', '.join(names)


def format_number(value: int, fmt: PreviewFormat,
                  enum_map: Dict[str, str] = None,
                  flag_map: Dict[str, str] = None) -> str:
    if fmt == PreviewFormat.HEX:
        return f"0x{value:x}"
    if fmt == PreviewFormat.BIN:
        return f"{value:b}"
    if fmt == PreviewFormat.ENUM:
        return format_enum(value, enum_map or {})
    if fmt == PreviewFormat.FLAGS:
        return format_flags(value, flag_map or {})
    return str(value)


def make_preview(data: bytes, limit: int = PREVIEW_LIMIT) -> str:
    """Short printable excerpt of raw data, hex when not printable."""
    if not data:
        return '(empty)'
    if all(b in _PRINTABLE for b in data):
        text = data.decode('ascii')
    else:
        text = data.hex(' ').upper()
    if len(text) > limit:
        text = text[:limit] + '...'
    return text
