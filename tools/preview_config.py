#!/usr/bin/env python3
"""
preview_config.py - Data model for log line preview rules

A preview rule gates a raw log line with a regular expression and then
decodes a byte buffer (the whole line or one capture group) into a tree
of named fields.

Usage:
    from preview_config import PreviewDefinition, FieldSpec, BufferType

    fmt = PreviewFormat.from_string('hex')
    fmt.to_string()  # 'hex'
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Union


class BufferType(Enum):
    """How raw text is turned into bytes."""
    STRING = 'string'
    HEX_STRING = 'hexString'
    BASE64 = 'base64'
    BIN = 'bin'
    BYTES = 'bytes'

    @classmethod
    def from_string(cls, value: Any) -> Optional['BufferType']:
        key = str(value).strip().lower() if isinstance(value, str) else ''
        if key == 'binary':
            return cls.BIN
        for member in cls:
            if member.value.lower() == key:
                return member
        return None

    def to_string(self) -> str:
        return self.value


class PreviewFormat(Enum):
    """How a decoded field is displayed."""
    FIELDS = 'fields'
    MATCH = 'match'
    STRING = 'string'
    DIG = 'dig'
    DEC = 'dec'
    HEX = 'hex'
    BIN = 'bin'
    ENUM = 'enum'
    FLAGS = 'flags'
    BITFIELD = 'bitfield'

    @classmethod
    def from_string(cls, value: Any) -> Optional['PreviewFormat']:
        key = str(value).strip().lower() if isinstance(value, str) else ''
        for member in cls:
            if member.value == key:
                return member
        return None

    def to_string(self) -> str:
        return self.value


class FieldSource(Enum):
    BUFFER = 'buffer'
    CAPTURE = 'capture'

    @classmethod
    def from_string(cls, value: Any) -> Optional['FieldSource']:
        key = str(value).strip().lower() if isinstance(value, str) else ''
        for member in cls:
            if member.value == key:
                return member
        return None

    def to_string(self) -> str:
        return self.value


@dataclass
class ValueExpr:
    """
    Offset/width expression.

    Unset, an integer literal, or text such as "{size}-5" or "0x10+{hdr.len}".
    """
    is_set: bool = False
    literal: Optional[int] = None
    expression: str = ''

    @classmethod
    def of(cls, value: Union[int, str, None]) -> 'ValueExpr':
        if value is None:
            return cls()
        if isinstance(value, int):
            return cls(is_set=True, literal=value)
        return cls(is_set=True, expression=value)

    @property
    def is_literal(self) -> bool:
        return self.is_set and self.literal is not None

    def to_json(self) -> Union[int, str, None]:
        if not self.is_set:
            return None
        if self.is_literal:
            return self.literal
        return self.expression


@dataclass
class CaptureRef:
    """Regex capture group reference: 1-based index or group name."""
    is_set: bool = False
    index: Optional[int] = None
    name: str = ''

    @classmethod
    def of(cls, value: Union[int, str, None]) -> 'CaptureRef':
        if value is None:
            return cls()
        if isinstance(value, int):
            return cls(is_set=True, index=value)
        return cls(is_set=True, name=value)

    @property
    def is_index(self) -> bool:
        return self.is_set and self.index is not None

    @property
    def key(self) -> Union[int, str]:
        return self.index if self.is_index else self.name

    def describe(self) -> str:
        if not self.is_set:
            return 'capture (unset)'
        if self.is_index:
            return f"capture #{self.index}"
        return f"capture '{self.name}'"

    def to_json(self) -> Union[int, str, None]:
        if not self.is_set:
            return None
        return self.key


@dataclass
class FieldSpec:
    """One node of a rule's decode tree."""
    name: str
    source: FieldSource = FieldSource.BUFFER
    capture: CaptureRef = field(default_factory=CaptureRef)
    offset: ValueExpr = field(default_factory=ValueExpr)
    width: ValueExpr = field(default_factory=ValueExpr)
    type: BufferType = BufferType.BYTES
    format: PreviewFormat = PreviewFormat.STRING
    endianness: str = ''
    enum_map: Dict[str, str] = field(default_factory=dict)
    flag_map: Dict[str, str] = field(default_factory=dict)
    fields: List['FieldSpec'] = field(default_factory=list)
    bitfield_map: List['FieldSpec'] = field(default_factory=list)
    # Only used by format == MATCH
    regex: str = ''
    compiled: Any = field(default=None, compare=False, repr=False)

    @property
    def little_endian(self) -> bool:
        return self.endianness.strip().lower() == 'little'


@dataclass
class PreviewDefinition:
    """A named, regex-gated decoding rule."""
    name: str
    regex: str
    compiled: Any = field(default=None, compare=False, repr=False)
    enabled: bool = True
    # True when the source document said "enabled" explicitly
    has_enabled: bool = field(default=False, compare=False)
    buffer_capture: CaptureRef = field(default_factory=CaptureRef)
    offset: ValueExpr = field(default_factory=ValueExpr)
    type: BufferType = BufferType.STRING
    format: PreviewFormat = PreviewFormat.FIELDS
    fields: List[FieldSpec] = field(default_factory=list)

    def matches(self, line: str) -> bool:
        return self.compiled is not None and self.compiled.search(line) is not None


@dataclass
class ParseResult:
    """Outcome of parsing one configuration document."""
    previews: List[PreviewDefinition] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return len(self.errors) == 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            'previews': [p.name for p in self.previews],
            'errors': self.errors,
            'warnings': self.warnings,
        }


def join_path(prefix: str, name: str) -> str:
    return f"{prefix}.{name}" if prefix else name
