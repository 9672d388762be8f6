#!/usr/bin/env python3
"""
preview_settings.py - Where the preview rule document lives

Default:
  PREVIEW_RULES_HOME = ~/.config/preview-rules
  store_path         = PREVIEW_RULES_HOME/previews.json

Override:
  - env: PREVIEW_RULES_HOME
  - CLI flag: --config PATH (the document path itself)
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional


HOME_ENV = "PREVIEW_RULES_HOME"
STORE_FILENAME = "previews.json"


def default_home() -> Path:
    return Path(os.environ.get(HOME_ENV, str(Path.home() / ".config" / "preview-rules"))).expanduser()


@dataclass(frozen=True)
class Settings:
    store_path: Path


def load_settings(config_path: Optional[Path] = None) -> Settings:
    if config_path is not None:
        path = Path(config_path).expanduser()
        return Settings(store_path=path)
    return Settings(store_path=default_home() / STORE_FILENAME)
