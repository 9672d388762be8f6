#!/usr/bin/env python3
"""
preview_tool.py - Manage preview rules and decode log lines

Usage:
    # Rule set management (stored in $PREVIEW_RULES_HOME/previews.json)
    python preview_tool.py list
    python preview_tool.py import vendor_rules.json
    python preview_tool.py enable EHCP
    python preview_tool.py disable EHCP
    python preview_tool.py remove EHCP
    python preview_tool.py clear

    # Validate a rule file without importing it
    python preview_tool.py check vendor_rules.yaml --json

    # Decode lines (auto-detect the rule unless --rule is given)
    python preview_tool.py decode 'SRING: 1,48,4548...'
    python preview_tool.py decode --rule EHCP --file capture.log --json
"""

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Iterable, List, Optional

from preview_decoder import DecodeNode, LineDecodeResult, NodeStatus
from preview_parser import PreviewConfigParser
from preview_registry import PreviewRegistry
from preview_settings import load_settings
from preview_store import ConfigStore


def render_nodes(nodes: Iterable[DecodeNode], indent: int = 0) -> List[str]:
    """Indented text rendering of a decode tree."""
    lines = []
    for node in nodes:
        marker = {NodeStatus.ERROR: '✗ ', NodeStatus.SKIPPED: '- '}.get(node.status, '')
        lines.append(f"{'  ' * indent}{marker}{node.label}: {node.text}")
        lines.extend(render_nodes(node.children, indent + 1))
    return lines


def print_result(result: LineDecodeResult, line: str):
    title = result.rule_name or 'Auto'
    print(f"[{title}] {line}")
    if not result.success:
        print(f"  {result.message}")
        return
    for text in render_nodes(result.nodes, indent=1):
        print(text)


def print_messages(errors: List[str], warnings: List[str]):
    for error in errors:
        print(f"ERROR: {error}", file=sys.stderr)
    for warning in warnings:
        print(f"WARNING: {warning}", file=sys.stderr)


def read_lines(args) -> List[str]:
    if args.file:
        text = Path(args.file).read_text(encoding='utf-8', errors='replace')
        return [line for line in text.splitlines() if line.strip()]
    return list(args.lines)


def cmd_list(registry: PreviewRegistry, args) -> int:
    previews = registry.all()
    if args.json:
        print(json.dumps([{'name': p.name, 'regex': p.regex, 'enabled': p.enabled}
                          for p in previews], indent=2))
        return 0
    if not previews:
        print("No preview definitions loaded.")
        return 0
    for preview in previews:
        state = 'on ' if preview.enabled else 'off'
        print(f"[{state}] {preview.name}  {preview.regex}")
    return 0


def cmd_import(registry: PreviewRegistry, args) -> int:
    result = registry.import_from(args.path)
    print_messages(result.errors, result.warnings)
    if not result.ok:
        return 1
    print(f"Imported {len(result.imported)} preview(s): {', '.join(result.imported)}")
    return 0


def cmd_remove(registry: PreviewRegistry, args) -> int:
    if not registry.remove_by_name(args.name):
        print(f"Error: could not remove '{args.name}'", file=sys.stderr)
        return 1
    return 0


def cmd_clear(registry: PreviewRegistry, args) -> int:
    if not registry.clear_all():
        print("Error: could not clear previews", file=sys.stderr)
        return 1
    return 0


def cmd_toggle(registry: PreviewRegistry, args) -> int:
    enabled = args.command == 'enable'
    if not registry.set_enabled(args.name, enabled):
        print(f"Error: unknown preview '{args.name}'", file=sys.stderr)
        return 1
    return 0


def cmd_check(registry: PreviewRegistry, args) -> int:
    result = PreviewConfigParser().parse_file(args.path)
    if args.json:
        print(json.dumps(result.to_dict(), indent=2))
    else:
        print_messages(result.errors, result.warnings)
        status = 'VALID' if result.success else 'INVALID'
        print(f"{args.path}: {status} ({len(result.previews)} preview(s))")
    return 0 if result.success else 1


def cmd_decode(registry: PreviewRegistry, args) -> int:
    results = []
    for line in read_lines(args):
        if args.rule:
            results.append((line, registry.decode(line, args.rule)))
        else:
            results.append((line, registry.auto_decode(line)))

    if args.json:
        print(json.dumps([dict(r.to_dict(), line=line) for line, r in results], indent=2))
    else:
        for line, result in results:
            print_result(result, line)
    return 0 if results and all(r.success for _, r in results) else 1


COMMANDS = {
    'list': cmd_list,
    'import': cmd_import,
    'remove': cmd_remove,
    'clear': cmd_clear,
    'enable': cmd_toggle,
    'disable': cmd_toggle,
    'check': cmd_check,
    'decode': cmd_decode,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description='Manage log line preview rules and decode lines with them'
    )
    parser.add_argument('--config', type=Path,
                        help='Preview document path (default: $PREVIEW_RULES_HOME/previews.json)')
    parser.add_argument('-v', '--verbose', action='store_true', help='Verbose logging')
    subparsers = parser.add_subparsers(dest='command', required=True)

    lst = subparsers.add_parser('list', help='List stored previews')
    lst.add_argument('--json', action='store_true', help='Output as JSON')

    imp = subparsers.add_parser('import', help='Merge previews from a JSON/YAML file')
    imp.add_argument('path', type=Path)

    rem = subparsers.add_parser('remove', help='Remove one preview')
    rem.add_argument('name')

    subparsers.add_parser('clear', help='Remove every preview')

    for command in ('enable', 'disable'):
        tog = subparsers.add_parser(command, help=f'{command.capitalize()} one preview')
        tog.add_argument('name')

    chk = subparsers.add_parser('check', help='Validate a preview file without importing')
    chk.add_argument('path', type=Path)
    chk.add_argument('--json', action='store_true', help='Output as JSON')

    dec = subparsers.add_parser('decode', help='Decode log lines')
    dec.add_argument('lines', nargs='*', help='Raw log lines')
    dec.add_argument('-f', '--file', type=Path, help='Read lines from a log file')
    dec.add_argument('-r', '--rule', help='Preview name (default: auto-detect)')
    dec.add_argument('--json', action='store_true', help='Output as JSON')

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.INFO if args.verbose else logging.WARNING,
        format='%(levelname)s %(name)s: %(message)s',
    )

    settings = load_settings(args.config)
    registry = PreviewRegistry(ConfigStore(settings.store_path))
    registry.load()
    return COMMANDS[args.command](registry, args)


if __name__ == '__main__':
    sys.exit(main())
