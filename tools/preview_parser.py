#!/usr/bin/env python3
"""
preview_parser.py - Parse and validate preview rule documents

Accepted document shapes:
    {"version": 1, "previews": [ {rule}, ... ]}
    [ {rule}, ... ]

Problems are collected, never raised:
    errors   - the affected rule (or field) is rejected
    warnings - accepted, defect noted (unknown keys, missing enumMap, ...)

Usage:
    from preview_parser import PreviewConfigParser

    result = PreviewConfigParser().parse_file('previews.json')
    if not result.success:
        print(result.errors)
"""

import json
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import regex
import yaml

from preview_config import (
    BufferType, CaptureRef, FieldSource, FieldSpec, ParseResult,
    PreviewDefinition, PreviewFormat, ValueExpr,
)
from preview_expression import parse_numeric_string


RULE_KEYS = frozenset({
    'name', 'regex', 'pattern', 'enabled', 'bufferCapture',
    'offset', 'type', 'format', 'fields',
})

FIELD_KEYS = frozenset({
    'name', 'source', 'capture', 'offset', 'width', 'type',
    'endianness', 'format', 'enumMap', 'flagMap', 'fields',
    'bitfieldMap', 'regex',
})

YAML_SUFFIXES = ('.yaml', '.yml')


def compile_pattern(pattern: str):
    """Compile a Perl-style pattern; raises regex.error."""
    return regex.compile(pattern)


def _context(context: str, key: str) -> str:
    return f"{context}.{key}" if context else key


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


class PreviewConfigParser:
    """Turns JSON/YAML documents into validated PreviewDefinitions."""

    def parse_file(self, path: Union[str, Path]) -> ParseResult:
        path = Path(path)
        try:
            text = path.read_text(encoding='utf-8')
        except (OSError, UnicodeDecodeError):
            return ParseResult(errors=[f"Failed to open {path}."])

        if path.suffix.lower() in YAML_SUFFIXES:
            try:
                document = yaml.safe_load(text)
            except yaml.YAMLError as e:
                return ParseResult(errors=[f"Invalid YAML: {e}"])
            return self.parse_document(document)

        return self.parse_json(text)

    def parse_json(self, data: Union[bytes, str]) -> ParseResult:
        try:
            document = json.loads(data)
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            pos = getattr(e, 'pos', getattr(e, 'start', 0))
            msg = getattr(e, 'msg', getattr(e, 'reason', str(e)))
            return ParseResult(errors=[f"Invalid JSON: {msg} at offset {pos}."])
        return self.parse_document(document)

    def parse_document(self, document: Any) -> ParseResult:
        result = ParseResult()

        if isinstance(document, list):
            entries = document
        elif isinstance(document, dict):
            entries = document.get('previews')
            if not isinstance(entries, list):
                result.errors.append("Missing 'previews' array in JSON.")
                return result
        else:
            result.errors.append("Unsupported JSON root format.")
            return result

        seen = set()
        for index, entry in enumerate(entries):
            if not isinstance(entry, dict):
                result.errors.append(f"Preview entry {index} is not an object.")
                continue
            definition = self._parse_definition(entry, index, result)
            if definition is None:
                continue
            if definition.name in seen:
                result.errors.append(
                    f"Duplicate preview name '{definition.name}' at index {index}.")
                continue
            seen.add(definition.name)
            result.previews.append(definition)

        return result

    # ------------------------------------------------------------------
    # Rules
    # ------------------------------------------------------------------

    def _parse_definition(self, obj: Dict[str, Any], index: int,
                          result: ParseResult) -> Optional[PreviewDefinition]:
        name = obj.get('name')
        if not isinstance(name, str) or not name.strip():
            result.errors.append(f"Missing preview name at index {index}.")
            return None

        pattern = obj['regex'] if 'regex' in obj else obj.get('pattern')
        if not isinstance(pattern, str) or not pattern.strip():
            result.errors.append(f"Missing preview regex for '{name}'.")
            return None

        for key in obj:
            if key not in RULE_KEYS:
                result.warnings.append(f"Unknown preview property '{key}' for '{name}'.")

        try:
            compiled = compile_pattern(pattern)
        except regex.error as e:
            result.errors.append(f"Invalid regex for '{name}': {e}")
            return None

        definition = PreviewDefinition(name=name, regex=pattern, compiled=compiled)

        if 'enabled' in obj:
            if isinstance(obj['enabled'], bool):
                definition.enabled = obj['enabled']
                definition.has_enabled = True
            else:
                result.warnings.append(
                    f"Ambiguous enabled value for '{name}'; treating as unspecified.")

        definition.buffer_capture = self._parse_capture(
            obj.get('bufferCapture'), f"preview {name} bufferCapture", result)
        definition.offset = self._parse_value_expr(
            obj.get('offset'), f"preview {name} offset", result)

        if 'type' in obj:
            buffer_type = BufferType.from_string(obj['type'])
            if buffer_type is None:
                result.warnings.append(f"Unknown preview buffer type for '{name}'.")
            else:
                definition.type = buffer_type

        if 'format' in obj:
            fmt = PreviewFormat.from_string(obj['format'])
            if fmt is None:
                result.warnings.append(f"Unknown preview format for '{name}'.")
            else:
                definition.format = fmt
        if definition.format != PreviewFormat.FIELDS:
            result.warnings.append(
                f"Preview format '{definition.format.to_string()}' for '{name}' "
                f"is decoded as fields.")

        context = f"preview {name} fields"
        if definition.format == PreviewFormat.FIELDS:
            fields = self._parse_children(obj, 'fields', context, f"'{name}'", result)
            if fields is None:
                return None
            definition.fields = fields
        elif 'fields' in obj:
            if isinstance(obj['fields'], list):
                definition.fields = self._parse_field_array(obj['fields'], context, result)
            else:
                result.errors.append(f"Expected array at {context}.")
        return definition

    # ------------------------------------------------------------------
    # Fields
    # ------------------------------------------------------------------

    def _parse_children(self, obj: Dict[str, Any], key: str, context: str,
                        label: str, result: ParseResult) -> Optional[List[FieldSpec]]:
        """Required, non-empty nested field array; None rejects the owner."""
        if key not in obj:
            result.errors.append(f"Missing fields for {label}.")
            return None
        value = obj[key]
        if not isinstance(value, list):
            result.errors.append(f"Expected array at {context}.")
            return None
        if not value:
            result.errors.append(f"Empty fields for {label}.")
            return None
        return self._parse_field_array(value, context, result)

    def _parse_field_array(self, items: List[Any], context: str,
                           result: ParseResult) -> List[FieldSpec]:
        fields = []
        for index, item in enumerate(items):
            item_context = f"{context}[{index}]"
            if not isinstance(item, dict):
                result.errors.append(f"Expected object at {item_context}.")
                continue
            spec = self._parse_field(item, item_context, result)
            if spec is not None:
                fields.append(spec)
        return fields

    def _parse_field(self, obj: Dict[str, Any], context: str,
                     result: ParseResult) -> Optional[FieldSpec]:
        name = obj.get('name')
        if not isinstance(name, str) or not name.strip():
            result.errors.append(f"Missing field name at {context}.")
            return None

        spec = FieldSpec(name=name)

        for key in obj:
            if key not in FIELD_KEYS:
                result.warnings.append(f"Unknown field property '{key}' at {context}.")

        if 'source' in obj:
            source = FieldSource.from_string(obj['source'])
            if source is None:
                result.warnings.append(f"Unknown field source at {context}.")
            else:
                spec.source = source

        spec.capture = self._parse_capture(obj.get('capture'),
                                           _context(context, 'capture'), result)
        spec.offset = self._parse_value_expr(obj.get('offset'),
                                             _context(context, 'offset'), result)
        spec.width = self._parse_value_expr(obj.get('width'),
                                            _context(context, 'width'), result)

        if 'type' in obj:
            buffer_type = BufferType.from_string(obj['type'])
            if buffer_type is None:
                result.warnings.append(f"Unknown field type at {context}.")
            else:
                spec.type = buffer_type

        if 'format' in obj:
            fmt = PreviewFormat.from_string(obj['format'])
            if fmt is None:
                result.warnings.append(f"Unknown field format at {context}.")
            else:
                spec.format = fmt
        elif 'fields' in obj:
            spec.format = PreviewFormat.FIELDS

        if 'endianness' in obj:
            endianness = obj['endianness']
            if not isinstance(endianness, str):
                result.warnings.append(f"Invalid endianness at {context}.")
            else:
                if endianness.strip().lower() not in ('little', 'big'):
                    result.warnings.append(
                        f"Unknown endianness '{endianness}' at {context}; using big.")
                spec.endianness = endianness

        spec.enum_map = self._parse_table(obj, 'enumMap', context, result)
        spec.flag_map = self._parse_table(obj, 'flagMap', context, result)

        if spec.source == FieldSource.CAPTURE and not spec.capture.is_set:
            result.warnings.append(f"Missing capture for field {context}.")

        if spec.format == PreviewFormat.ENUM and not spec.enum_map:
            result.warnings.append(f"Missing enumMap for field {context}.")

        if spec.format == PreviewFormat.FLAGS and not spec.flag_map:
            result.warnings.append(f"Missing flagMap for field {context}.")

        if spec.format == PreviewFormat.MATCH:
            pattern = obj.get('regex')
            if not isinstance(pattern, str) or not pattern.strip():
                result.errors.append(f"Missing regex for match field {context}.")
                return None
            try:
                spec.compiled = compile_pattern(pattern)
            except regex.error as e:
                result.errors.append(f"Invalid regex for field {context}: {e}")
                return None
            spec.regex = pattern
        elif 'regex' in obj:
            result.warnings.append(f"Ignoring regex for non-match field {context}.")

        if spec.format in (PreviewFormat.FIELDS, PreviewFormat.MATCH):
            children = self._parse_children(obj, 'fields', _context(context, 'fields'),
                                            context, result)
            if children is None:
                return None
            spec.fields = children

        if spec.format == PreviewFormat.BITFIELD:
            if 'bitfieldMap' not in obj:
                result.warnings.append(f"Missing bitfieldMap for {context}.")
            elif not isinstance(obj['bitfieldMap'], list):
                result.errors.append(
                    f"Expected array at {_context(context, 'bitfieldMap')}.")
            else:
                spec.bitfield_map = self._parse_field_array(
                    obj['bitfieldMap'], _context(context, 'bitfieldMap'), result)

        return spec

    # ------------------------------------------------------------------
    # Scalars
    # ------------------------------------------------------------------

    def _parse_value_expr(self, value: Any, context: str,
                          result: ParseResult) -> ValueExpr:
        if value is None:
            return ValueExpr()
        if _is_int(value):
            return ValueExpr.of(value)
        if isinstance(value, float) and value.is_integer():
            return ValueExpr.of(int(value))
        if isinstance(value, str):
            return ValueExpr.of(value)
        result.warnings.append(f"Invalid value expression at {context}.")
        return ValueExpr()

    def _parse_capture(self, value: Any, context: str,
                       result: ParseResult) -> CaptureRef:
        if value is None:
            return CaptureRef()
        if _is_int(value):
            return CaptureRef.of(value)
        if isinstance(value, float) and value.is_integer():
            return CaptureRef.of(int(value))
        if isinstance(value, str):
            return CaptureRef.of(value)
        result.warnings.append(f"Invalid capture reference at {context}.")
        return CaptureRef()

    def _parse_table(self, obj: Dict[str, Any], key: str, context: str,
                     result: ParseResult) -> Dict[str, str]:
        if key not in obj:
            return {}
        value = obj[key]
        if not isinstance(value, dict):
            result.warnings.append(f"Expected object for {key} at {context}.")
            return {}

        table = {}
        for raw_key, label in value.items():
            table_key = str(raw_key)
            try:
                parse_numeric_string(table_key)
            except ValueError:
                result.warnings.append(
                    f"Invalid {key} key '{table_key}' at {context}; it never matches.")
            table[table_key] = label if isinstance(label, str) else str(label)
        return table


def parse_json(data: Union[bytes, str]) -> ParseResult:
    """Convenience function to parse a JSON document."""
    return PreviewConfigParser().parse_json(data)


def parse_file(path: Union[str, Path]) -> ParseResult:
    """Convenience function to parse a JSON or YAML file."""
    return PreviewConfigParser().parse_file(path)
