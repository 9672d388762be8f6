#!/usr/bin/env python3
"""
preview_registry.py - Owned set of preview rules

The registry is the single source of truth for the active rules. It is
constructed explicitly around a ConfigStore and handed to whatever needs
it; every read-modify-write sequence (lookup, mutate, persist) runs under
one lock, and listeners are notified after the lock is released.

Usage:
    from preview_registry import PreviewRegistry
    from preview_store import ConfigStore

    registry = PreviewRegistry(ConfigStore('previews.json'))
    registry.load()
    result = registry.import_from('vendor_rules.json')
    name = registry.first_matching_enabled(line)
"""

import logging
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, List, Optional, Tuple, Union

from preview_config import ParseResult, PreviewDefinition
from preview_decoder import FieldDecoder, LineDecodeResult, LineStatus
from preview_parser import PreviewConfigParser
from preview_store import ConfigStore, StoreError


logger = logging.getLogger(__name__)

SAVE_FAILED = "Failed to save previews configuration."


@dataclass
class ImportResult:
    ok: bool = False
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    imported: List[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return self.ok


class PreviewRegistry:
    """Ordered, uniquely named preview rules backed by a ConfigStore."""

    def __init__(self, store: ConfigStore):
        self.store = store
        self._previews: List[PreviewDefinition] = []
        self._lock = threading.RLock()
        self._listeners: List[Callable[[], None]] = []
        self._enabled_listeners: List[Callable[[str, bool], None]] = []

    # ------------------------------------------------------------------
    # Notification
    # ------------------------------------------------------------------

    def add_listener(self, callback: Callable[[], None]):
        """Call ``callback()`` whenever the rule set changes."""
        self._listeners.append(callback)

    def add_enabled_listener(self, callback: Callable[[str, bool], None]):
        """Call ``callback(name, enabled)`` when one rule is toggled."""
        self._enabled_listeners.append(callback)

    def _notify(self):
        for callback in list(self._listeners):
            callback()

    def _notify_enabled(self, name: str, enabled: bool):
        for callback in list(self._enabled_listeners):
            callback(name, enabled)

    # ------------------------------------------------------------------
    # Mutation
    # ------------------------------------------------------------------

    def load(self) -> ParseResult:
        """Replace the rule set with the stored one; problems are logged."""
        result = self.store.load()
        for error in result.errors:
            logger.error("Preview config error: %s", error)
        for warning in result.warnings:
            logger.warning("Preview config warning: %s", warning)

        with self._lock:
            self._previews = list(result.previews)
            for preview in self._previews:
                preview.has_enabled = True
        self._notify()
        return result

    def import_from(self, path: Union[str, Path]) -> ImportResult:
        """
        Merge the rules of a file into the registry.

        Any parse error aborts the whole import. Existing names are replaced
        in place (keeping their enabled state unless the file sets it), new
        names are appended. When persisting fails the merged state is kept
        in memory and the failure is reported.
        """
        parsed = PreviewConfigParser().parse_file(path)
        result = ImportResult(errors=list(parsed.errors), warnings=list(parsed.warnings))
        if parsed.errors:
            return result

        with self._lock:
            for incoming in parsed.previews:
                index = self._index_of(incoming.name)
                if index is not None:
                    if not incoming.has_enabled:
                        incoming.enabled = self._previews[index].enabled
                    incoming.has_enabled = True
                    self._previews[index] = incoming
                else:
                    if not incoming.has_enabled:
                        incoming.enabled = True
                    incoming.has_enabled = True
                    self._previews.append(incoming)
                result.imported.append(incoming.name)

            try:
                self.store.save(self._previews)
                result.ok = True
            except StoreError:
                result.errors.append(SAVE_FAILED)

        self._notify()
        return result

    def remove_by_name(self, name: str) -> bool:
        with self._lock:
            index = self._index_of(name)
            if index is None:
                return False
            removed = self._previews.pop(index)
            try:
                self.store.save(self._previews)
            except StoreError:
                self._previews.insert(index, removed)
                return False
        self._notify()
        return True

    def clear_all(self) -> bool:
        with self._lock:
            previous = self._previews
            self._previews = []
            try:
                self.store.save(self._previews)
            except StoreError:
                self._previews = previous
                return False
        self._notify()
        return True

    def set_enabled(self, name: str, enabled: bool) -> bool:
        """Toggle one rule; returns False when the name is unknown."""
        with self._lock:
            index = self._index_of(name)
            if index is None:
                return False
            preview = self._previews[index]
            if preview.enabled == enabled:
                return True
            preview.enabled = enabled
            preview.has_enabled = True
            try:
                self.store.save(self._previews)
            except StoreError:
                logger.warning("Preview '%s' toggled but not persisted.", name)
        self._notify_enabled(name, enabled)
        self._notify()
        return True

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def _index_of(self, name: str) -> Optional[int]:
        for index, preview in enumerate(self._previews):
            if preview.name == name:
                return index
        return None

    def all(self) -> Tuple[PreviewDefinition, ...]:
        with self._lock:
            return tuple(self._previews)

    def enabled(self) -> List[PreviewDefinition]:
        with self._lock:
            return [p for p in self._previews if p.enabled]

    def find_by_name(self, name: str) -> Optional[PreviewDefinition]:
        with self._lock:
            index = self._index_of(name)
            return None if index is None else self._previews[index]

    def first_matching_enabled(self, line: str) -> Optional[str]:
        for preview in self.all():
            if preview.enabled and preview.matches(line):
                return preview.name
        return None

    # ------------------------------------------------------------------
    # Decoding entry points
    # ------------------------------------------------------------------

    def decode(self, line: str, name: str) -> LineDecodeResult:
        """Decode ``line`` with the rule called ``name``."""
        if not self.all():
            return LineDecodeResult(name, LineStatus.NO_RULES,
                                    message="No preview definitions loaded.")
        definition = self.find_by_name(name)
        if definition is None:
            return LineDecodeResult(name, LineStatus.NOT_FOUND,
                                    message="Selected preview is not available.")
        return FieldDecoder(definition).decode_line(line)

    def auto_decode(self, line: str) -> LineDecodeResult:
        """Decode ``line`` with the first enabled rule that matches it."""
        if not self.all():
            return LineDecodeResult('', LineStatus.NO_RULES,
                                    message="No preview definitions loaded.")
        name = self.first_matching_enabled(line)
        if name is None:
            return LineDecodeResult('', LineStatus.NO_MATCH, message="No preview matched.")
        return self.decode(line, name)
