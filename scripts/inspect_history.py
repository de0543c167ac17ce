#!/usr/bin/env python3
"""Summarize a repost-guard history snapshot file without starting the service."""

from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path

from repost_guard.core.errors import CorruptPersistedState
from repost_guard.schemas.records import UrlRecord
from repost_guard.services.history_store import (
    count_by_location,
    ordered_records,
    parse_snapshot,
    records_for_location,
)


def load_records(path: Path) -> list[UrlRecord]:
    if not path.exists():
        return []
    return ordered_records(parse_snapshot(path.read_bytes(), source=path).values())


def render_stats(records: list[UrlRecord]) -> str:
    counts = count_by_location(records)
    lines = [f"records: {len(records)}"]
    for location_id, count in sorted(counts.items(), key=lambda item: (-item[1], item[0])):
        lines.append(f"  {location_id}: {count}")
    return "\n".join(lines)


def render_location(records: list[UrlRecord], location_id: str) -> str:
    if not records:
        return f"no records for location {location_id}"
    return "\n".join(f"{r.posted_at.isoformat()} {r.poster_id} {r.canonical_url}" for r in records)


def main() -> int:
    parser = argparse.ArgumentParser(description="Inspect a repost-guard history snapshot.")
    parser.add_argument("--file", required=True, help="Path to the history snapshot JSON file.")
    parser.add_argument("--location", default=None, help="Show the history of one channel or thread.")
    parser.add_argument("--json", action="store_true", help="Emit machine-readable JSON instead of text.")
    args = parser.parse_args()

    try:
        records = load_records(Path(args.file))
    except CorruptPersistedState as exc:
        print(f"error: {args.file} is not a valid history snapshot: {exc}", file=sys.stderr)
        return 2

    if args.location:
        selected = records_for_location(records, args.location)
        if args.json:
            print(json.dumps([r.model_dump(mode="json") for r in selected], indent=2))
        else:
            print(render_location(selected, args.location))
        return 0

    if args.json:
        print(json.dumps({"record_count": len(records), "per_location_counts": count_by_location(records)}, indent=2))
    else:
        print(render_stats(records))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
