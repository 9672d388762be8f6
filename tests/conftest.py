"""
pytest configuration and fixtures for preview rule tests.

Provides reusable fixtures for:
- Temporary configuration stores and registries
- Rule document writers
- Hypothesis property-based testing configuration
"""

import json
import os
import sys
from pathlib import Path

import pytest

# Add project paths
sys.path.insert(0, str(Path(__file__).parent.parent / "tools"))

# Configure Hypothesis profiles
from hypothesis import settings, Verbosity, Phase

# Default profile: balanced speed and coverage
settings.register_profile(
    "default",
    max_examples=100,
    deadline=None,
)

# CI profile: more thorough testing
settings.register_profile(
    "ci",
    max_examples=500,
    deadline=None,
    suppress_health_check=[],
    phases=[Phase.explicit, Phase.reuse, Phase.generate, Phase.shrink],
)

# Dev profile: fast iteration
settings.register_profile(
    "dev",
    max_examples=10,
    deadline=None,
)

# Debug profile: verbose output
settings.register_profile(
    "debug",
    max_examples=10,
    verbosity=Verbosity.verbose,
    deadline=None,
)

settings.load_profile(os.environ.get("HYPOTHESIS_PROFILE", "default"))


def ehcp_payload(size_digits: str = "029", checksum: str = "D774") -> str:
    """EHCP frame text: header, 3 hex size digits, 30 char body, checksum."""
    return "EHCP" + size_digits + "000000000410410800100251210105" + checksum


def sring_line(payload_text: str) -> str:
    """SRING log line carrying the frame as upper-case hex."""
    return "SRING: 1,48," + payload_text.encode("ascii").hex().upper()


EHCP_RULE = {
    "name": "EHCP",
    "regex": r"^SRING: 1,48,(?<payload>[0-9A-F]+)$",
    "format": "fields",
    "fields": [
        {
            "name": "ehcp",
            "source": "capture",
            "capture": "payload",
            "type": "hexString",
            "format": "fields",
            "fields": [
                {"name": "header", "type": "string", "format": "string", "width": 4},
                {"name": "size", "type": "hexString", "format": "dig", "width": 3},
                {"name": "checksum", "type": "hexString", "format": "hex",
                 "offset": "{ehcp.size}-7-4", "width": 4},
            ],
        }
    ],
}


@pytest.fixture
def ehcp_rule():
    """A fresh copy of the EHCP rule document entry."""
    return json.loads(json.dumps(EHCP_RULE))


@pytest.fixture
def write_rules(tmp_path):
    """
    Write a rule document and return its path.

    Usage:
        def test_import(write_rules):
            path = write_rules([{...}], name='rules.json')
    """
    def _write(document, name="rules.json"):
        path = tmp_path / name
        if isinstance(document, (bytes, str)):
            data = document.encode("utf-8") if isinstance(document, str) else document
            path.write_bytes(data)
        else:
            path.write_text(json.dumps(document), encoding="utf-8")
        return path
    return _write


@pytest.fixture
def store_path(tmp_path):
    return tmp_path / "config" / "previews.json"


@pytest.fixture
def store(store_path):
    from preview_store import ConfigStore
    return ConfigStore(store_path)


@pytest.fixture
def registry(store):
    from preview_registry import PreviewRegistry
    reg = PreviewRegistry(store)
    reg.load()
    return reg


# Markers for test categorization
def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "slow: marks tests as slow (deselect with '-m \"not slow\"')"
    )
    config.addinivalue_line(
        "markers", "integration: marks tests as end-to-end decode tests"
    )
