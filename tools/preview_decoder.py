#!/usr/bin/env python3
"""
preview_decoder.py - Decode a log line into a tree of preview fields

Walks a rule's field tree against the matched line and produces a
presentation-agnostic tree of DecodeNode(label, text, status, diagnostic,
children).

Per field:
    1. take raw data: a regex capture, or a slice of the current buffer
       at cursor + offset with the given width (default: rest of buffer)
    2. decode it per buffer type (hexString, base64, ...)
    3. display it per format; numeric values are bound under their dotted
       path ("ehcp.size") so later offset/width expressions can use them

A failing field becomes an error node; a field whose offset/width refers
to a value that is not bound (yet) becomes a skipped node. Neither stops
sibling or ancestor decoding.

Usage:
    from preview_decoder import decode_line

    result = decode_line(definition, 'SRING: 1,48,4548...')
    for node in result.nodes:
        print(node.label, node.text)
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from preview_codec import (
    CodecError, bytes_to_text, decode_buffer, format_number, make_preview,
    numeric_value,
)
from preview_config import (
    BufferType, CaptureRef, FieldSource, FieldSpec, PreviewDefinition,
    PreviewFormat, join_path,
)
from preview_expression import ExpressionError, evaluate, to_int64


logger = logging.getLogger(__name__)


class NodeStatus(Enum):
    OK = 'ok'
    SKIPPED = 'skipped'
    ERROR = 'error'


@dataclass
class DecodeDiagnostic:
    """Context attached to an error or skipped node."""
    rule: str
    path: str
    source: str
    reason: str
    offset: Optional[int] = None
    width: Optional[int] = None
    preview: str = ''

    def describe(self) -> str:
        lines = [
            f"Rule: {self.rule}",
            f"Field: {self.path}",
            f"Source: {self.source}",
        ]
        if self.offset is not None:
            lines.append(f"Offset: {self.offset}")
        if self.width is not None:
            lines.append(f"Width: {self.width}")
        if self.preview:
            lines.append(f"Data: {self.preview}")
        lines.append(f"Reason: {self.reason}")
        return '\n'.join(lines)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'rule': self.rule,
            'path': self.path,
            'source': self.source,
            'offset': self.offset,
            'width': self.width,
            'preview': self.preview,
            'reason': self.reason,
        }


@dataclass
class DecodeNode:
    label: str
    text: str = ''
    status: NodeStatus = NodeStatus.OK
    diagnostic: Optional[DecodeDiagnostic] = None
    children: List['DecodeNode'] = field(default_factory=list)

    @property
    def tooltip(self) -> Optional[str]:
        return self.diagnostic.describe() if self.diagnostic else None

    def find(self, label: str) -> Optional['DecodeNode']:
        """Depth-first search for a descendant (or self) by label."""
        if self.label == label:
            return self
        for child in self.children:
            found = child.find(label)
            if found is not None:
                return found
        return None

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            'label': self.label,
            'text': self.text,
            'status': self.status.value,
        }
        if self.diagnostic:
            out['diagnostic'] = self.diagnostic.to_dict()
        if self.children:
            out['children'] = [child.to_dict() for child in self.children]
        return out


class LineStatus(Enum):
    OK = 'ok'
    NO_MATCH = 'no_match'
    NOT_FOUND = 'not_found'
    NO_RULES = 'no_rules'
    ERROR = 'error'


@dataclass
class LineDecodeResult:
    """Outcome of decoding one line against one rule."""
    rule_name: str
    status: LineStatus
    nodes: List[DecodeNode] = field(default_factory=list)
    message: str = ''
    values: Dict[str, int] = field(default_factory=dict)

    @property
    def success(self) -> bool:
        return self.status == LineStatus.OK

    def find(self, label: str) -> Optional[DecodeNode]:
        for node in self.nodes:
            found = node.find(label)
            if found is not None:
                return found
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'rule': self.rule_name,
            'status': self.status.value,
            'message': self.message,
            'fields': [node.to_dict() for node in self.nodes],
        }


@dataclass
class _Context:
    buffer: bytes
    cursor: int
    values: Dict[str, int]
    match: Any


class _FieldFailure(Exception):
    """Internal: abort one field with an error or skip marker."""

    def __init__(self, reason: str, missing_variable: Optional[str] = None,
                 offset: Optional[int] = None, width: Optional[int] = None,
                 raw: bytes = b''):
        super().__init__(reason)
        self.reason = reason
        self.missing_variable = missing_variable
        self.offset = offset
        self.width = width
        self.raw = raw


def capture_text(ref: CaptureRef, match: Any) -> Optional[str]:
    """Text of a capture group, None when unset or not participating."""
    if not ref.is_set or match is None:
        return None
    if ref.is_index and ref.index < 0:
        return None
    try:
        return match.group(ref.key)
    except IndexError:
        return None


class FieldDecoder:
    """Decodes lines for one PreviewDefinition."""

    def __init__(self, definition: PreviewDefinition):
        self.definition = definition

    def decode_line(self, line: str) -> LineDecodeResult:
        definition = self.definition
        match = definition.compiled.search(line) if definition.compiled else None
        if match is None:
            return LineDecodeResult(definition.name, LineStatus.NO_MATCH,
                                    message="No match for selected preview.")

        if definition.buffer_capture.is_set:
            text = capture_text(definition.buffer_capture, match)
            if text is None:
                return self._line_error(
                    f"Buffer {definition.buffer_capture.describe()} not set.")
        else:
            text = line

        try:
            buffer = decode_buffer(text.encode('utf-8'), definition.type)
        except CodecError as e:
            return self._line_error(f"Decode error: {e}")

        values: Dict[str, int] = {}
        try:
            start = evaluate(definition.offset, values)
        except ExpressionError as e:
            return self._line_error(f"Invalid start offset: {e}")
        if start < 0 or start > len(buffer):
            return self._line_error(
                f"Start offset {start} outside buffer of {len(buffer)} bytes.")

        context = _Context(buffer, start, values, match)
        nodes = [self._decode_field(spec, context, '') for spec in definition.fields]
        return LineDecodeResult(definition.name, LineStatus.OK, nodes, values=values)

    def _line_error(self, message: str) -> LineDecodeResult:
        logger.warning("Preview '%s': %s", self.definition.name, message)
        return LineDecodeResult(self.definition.name, LineStatus.ERROR, message=message)

    # ------------------------------------------------------------------
    # Fields
    # ------------------------------------------------------------------

    def _decode_field(self, spec: FieldSpec, context: _Context, prefix: str) -> DecodeNode:
        path = join_path(prefix, spec.name)
        if spec.source == FieldSource.CAPTURE:
            source = spec.capture.describe()
        else:
            source = 'buffer'

        try:
            if spec.source == FieldSource.CAPTURE:
                text = capture_text(spec.capture, context.match)
                if text is None:
                    raise _FieldFailure("Capture not set.")
                raw = text.encode('utf-8')
                offset = width = None
            else:
                raw, offset, width = self._take_slice(spec, context)
            return self._render(spec, raw, context, path, source, offset, width)
        except _FieldFailure as failure:
            return self._failure_node(spec, path, source, failure)

    def _resolve(self, expr, context: _Context, what: str, **where) -> int:
        try:
            return evaluate(expr, context.values)
        except ExpressionError as e:
            raise _FieldFailure(f"Invalid {what}: {e}",
                                missing_variable=e.missing_variable, **where)

    def _take_slice(self, spec: FieldSpec, context: _Context):
        buffer = context.buffer
        offset = self._resolve(spec.offset, context, 'offset', offset=context.cursor)
        if offset < 0:
            raise _FieldFailure(f"Negative offset ({offset}).", offset=context.cursor)

        cursor = context.cursor + offset
        if cursor > len(buffer):
            raise _FieldFailure(
                f"Offset exceeds buffer (cursor {cursor}, buffer {len(buffer)} bytes).",
                offset=cursor)

        remaining = len(buffer) - cursor
        width = self._resolve(spec.width, context, 'width', offset=cursor)
        if width < 0:
            raise _FieldFailure(f"Negative width ({width}).", offset=cursor, width=width)
        if width == 0:
            width = remaining
        if width > remaining:
            raise _FieldFailure(
                f"Width {width} exceeds remaining {remaining} bytes.",
                offset=cursor, width=width, raw=buffer[cursor:])

        context.cursor = cursor + width
        return buffer[cursor:cursor + width], cursor, width

    def _render(self, spec: FieldSpec, raw: bytes, context: _Context, path: str,
                source: str, offset: Optional[int], width: Optional[int]) -> DecodeNode:
        where = {'offset': offset, 'width': width, 'raw': raw}
        fmt = spec.format

        if fmt in (PreviewFormat.FIELDS, PreviewFormat.MATCH):
            try:
                data = decode_buffer(raw, spec.type)
            except CodecError as e:
                raise _FieldFailure(str(e), **where)
            match = context.match
            if fmt == PreviewFormat.MATCH:
                match = spec.compiled.search(bytes_to_text(data)) if spec.compiled else None
                if match is None:
                    raise _FieldFailure("Nested pattern did not match.", **where)

            node = DecodeNode(spec.name, f"{len(data)} bytes")
            child_context = _Context(data, 0, context.values, match)
            node.children = [self._decode_field(child, child_context, path)
                             for child in spec.fields]
            return node

        if fmt == PreviewFormat.STRING:
            if spec.type in (BufferType.HEX_STRING, BufferType.BASE64):
                try:
                    raw = decode_buffer(raw, spec.type)
                except CodecError as e:
                    raise _FieldFailure(str(e), **where)
            return DecodeNode(spec.name, bytes_to_text(raw))

        try:
            value = numeric_value(raw, spec.type, spec.little_endian)
        except CodecError as e:
            raise _FieldFailure(str(e), **where)

        context.values[path] = to_int64(value)
        node = DecodeNode(spec.name, format_number(value, fmt, spec.enum_map, spec.flag_map))
        if fmt == PreviewFormat.BITFIELD:
            total = self._bitfield_width(spec, context)
            node.children = self._bitfield_nodes(spec, value, total, context, path)
        return node

    # ------------------------------------------------------------------
    # Bitfields
    # ------------------------------------------------------------------

    def _sub_width(self, spec: FieldSpec, context: _Context) -> int:
        if not spec.width.is_set:
            return 1
        try:
            width = evaluate(spec.width, context.values)
        except ExpressionError:
            return 1
        return width if width > 0 else 1

    def _bitfield_width(self, spec: FieldSpec, context: _Context) -> int:
        if spec.width.is_set:
            try:
                total = evaluate(spec.width, context.values)
            except ExpressionError:
                total = 0
            if total > 0:
                return total
        return sum(self._sub_width(sub, context) for sub in spec.bitfield_map)

    def _bitfield_nodes(self, spec: FieldSpec, value: int, total: int,
                        context: _Context, path: str) -> List[DecodeNode]:
        """Split value into subfields, most significant bits first."""
        nodes = []
        remaining = total
        for sub in spec.bitfield_map:
            width = self._sub_width(sub, context)
            remaining -= width
            mask = (1 << 64) - 1 if width >= 64 else (1 << width) - 1
            bits = (value >> remaining) & mask if remaining >= 0 else 0

            sub_path = join_path(path, sub.name)
            context.values[sub_path] = to_int64(bits)
            node = DecodeNode(sub.name, format_number(bits, sub.format,
                                                      sub.enum_map, sub.flag_map))
            if sub.format == PreviewFormat.BITFIELD and sub.bitfield_map:
                node.children = self._bitfield_nodes(sub, bits, width, context, sub_path)
            nodes.append(node)
        return nodes

    # ------------------------------------------------------------------
    # Failures
    # ------------------------------------------------------------------

    def _failure_node(self, spec: FieldSpec, path: str, source: str,
                      failure: _FieldFailure) -> DecodeNode:
        diagnostic = DecodeDiagnostic(
            rule=self.definition.name,
            path=path,
            source=source,
            reason=failure.reason,
            offset=failure.offset,
            width=failure.width,
            preview=make_preview(failure.raw) if failure.raw else '',
        )

        if failure.missing_variable is not None:
            logger.warning("Preview field skipped: rule=%s field=%s source=%s offset=%s "
                           "width=%s data=%s reason=%s",
                           diagnostic.rule, path, source, diagnostic.offset,
                           diagnostic.width, diagnostic.preview, diagnostic.reason)
            return DecodeNode(spec.name, f"skipped: missing {failure.missing_variable}",
                              NodeStatus.SKIPPED, diagnostic)

        logger.warning("Preview decode error: rule=%s field=%s source=%s offset=%s "
                       "width=%s data=%s reason=%s",
                       diagnostic.rule, path, source, diagnostic.offset,
                       diagnostic.width, diagnostic.preview, diagnostic.reason)
        return DecodeNode(spec.name, f"Decode error: {failure.reason}",
                          NodeStatus.ERROR, diagnostic)


def decode_line(definition: PreviewDefinition, line: str) -> LineDecodeResult:
    """Convenience function to decode one line with one rule."""
    return FieldDecoder(definition).decode_line(line)
