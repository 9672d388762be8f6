#!/usr/bin/env python3
"""
preview_store.py - Persist preview rules as one JSON document

The document written is:
    {"version": 1, "previews": [ {rule}, ... ]}

Defaults are omitted on fields so the stored file stays close to what an
operator would write by hand; the rule-level type/format/enabled keys are
always written. Saving goes through a temporary file in the same
directory followed by os.replace(), so an interrupted write leaves the
previous document intact.
"""

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any, Dict, Iterable, Union

from preview_config import (
    BufferType, FieldSource, FieldSpec, ParseResult, PreviewDefinition,
    PreviewFormat,
)
from preview_parser import PreviewConfigParser


logger = logging.getLogger(__name__)

STORE_VERSION = 1


class StoreError(OSError):
    """The configuration document could not be written."""


def field_to_json(spec: FieldSpec) -> Dict[str, Any]:
    obj: Dict[str, Any] = {'name': spec.name}

    if spec.source != FieldSource.BUFFER:
        obj['source'] = spec.source.to_string()
    if spec.capture.is_set:
        obj['capture'] = spec.capture.to_json()
    if spec.offset.is_set:
        obj['offset'] = spec.offset.to_json()
    if spec.width.is_set:
        obj['width'] = spec.width.to_json()
    if spec.type != BufferType.BYTES:
        obj['type'] = spec.type.to_string()
    if spec.endianness:
        obj['endianness'] = spec.endianness
    if spec.format != PreviewFormat.STRING:
        obj['format'] = spec.format.to_string()
    if spec.regex:
        obj['regex'] = spec.regex
    if spec.enum_map:
        obj['enumMap'] = dict(spec.enum_map)
    if spec.flag_map:
        obj['flagMap'] = dict(spec.flag_map)
    if spec.fields:
        obj['fields'] = [field_to_json(child) for child in spec.fields]
    if spec.bitfield_map or spec.format == PreviewFormat.BITFIELD:
        obj['bitfieldMap'] = [field_to_json(child) for child in spec.bitfield_map]

    return obj


def preview_to_json(preview: PreviewDefinition) -> Dict[str, Any]:
    obj: Dict[str, Any] = {
        'name': preview.name,
        'regex': preview.regex,
        'enabled': preview.enabled,
    }
    if preview.buffer_capture.is_set:
        obj['bufferCapture'] = preview.buffer_capture.to_json()
    if preview.offset.is_set:
        obj['offset'] = preview.offset.to_json()
    obj['type'] = preview.type.to_string()
    obj['format'] = preview.format.to_string()
    if preview.fields:
        obj['fields'] = [field_to_json(spec) for spec in preview.fields]
    return obj


def dumps(previews: Iterable[PreviewDefinition]) -> str:
    root = {
        'version': STORE_VERSION,
        'previews': [preview_to_json(p) for p in previews],
    }
    return json.dumps(root, indent=4)


class ConfigStore:
    """Reads and atomically writes the preview rule document at ``path``."""

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)

    def load(self) -> ParseResult:
        """Parse the stored document; a missing file is an empty rule set."""
        if not self.path.exists():
            return ParseResult()
        return PreviewConfigParser().parse_file(self.path)

    def save(self, previews: Iterable[PreviewDefinition]):
        """Write all rules; raises StoreError."""
        payload = dumps(previews)
        tmp_name = None
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(prefix=f".{self.path.name}.",
                                            suffix='.tmp', dir=self.path.parent)
            with os.fdopen(fd, 'w', encoding='utf-8') as f:
                f.write(payload)
                f.write('\n')
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_name, self.path)
            tmp_name = None
        except OSError as e:
            logger.error("Failed to save previews to %s: %s", self.path, e)
            raise StoreError(f"Failed to save previews configuration: {e}") from e
        finally:
            if tmp_name is not None and os.path.exists(tmp_name):
                os.unlink(tmp_name)
