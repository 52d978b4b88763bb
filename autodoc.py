"""
xmir-autodoc - normalize parsed XMIR sources into an Abstract/Object forest.

Pipeline:
- Find every `.xmir` file under the input directory (sorted).
- Parse them (optionally with a thread pool; parsing is independent per file).
- Classify them one by one, in sorted order, against a single run-scoped
  IdentityRegistry, so the first file declaring a root wins.
- Group per-file forests under a caller key and dump them as JSON for the
  renderer/indexer that consume them.

A file that fails to parse is reported and skipped; it is never classified.
"""

from __future__ import annotations

import argparse
import json
import os
import sys
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Callable, Optional

import abstracts
from abstracts import Abstract, Classifier, IdentityRegistry, build_comment_index, log
from xmir import SourceUnit, XmirParseError, find_xmir_files, load_xmir


DEFAULT_INPUT_DIR = os.path.join(".", ".eoc", "1-parse")
DEFAULT_OUTPUT_DIR = os.path.join(".", "docs")
DEFAULT_JOBS = 1
OUTPUT_FILE = "abstracts.json"


@dataclass
class UnitResult:
    source: str
    abstracts: list[Abstract] = field(default_factory=list)


def classify_unit(unit: SourceUnit, classifier: Classifier) -> UnitResult:
    forest = classifier.classify(unit.nodes, build_comment_index(unit.comments))
    return UnitResult(source=unit.path, abstracts=forest)


def _load(path: str) -> Optional[SourceUnit]:
    try:
        return load_xmir(path)
    except (XmirParseError, OSError) as e:
        log(f"[WARN] Failed to parse {path}: {e}")
        return None


def load_units(paths: list[str], jobs: int = DEFAULT_JOBS) -> list[Optional[SourceUnit]]:
    """Parse `paths`; result order matches input order, None for failures."""
    if jobs <= 1 or len(paths) <= 1:
        return [_load(p) for p in paths]
    with ThreadPoolExecutor(max_workers=jobs) as executor:
        return list(executor.map(_load, paths))


def generate(input_dir: str, skip_uncommented: bool = False, jobs: int = DEFAULT_JOBS) -> list[UnitResult]:
    files = find_xmir_files(input_dir)
    if not files:
        log(f"[WARN] No .xmir files found in \"{input_dir}\". Please check your input directory.")
        return []
    log(f"[INFO] Found {len(files)} .xmir files to process.")

    # one registry per run: root ids never leak between invocations
    classifier = Classifier(registry=IdentityRegistry(), skip_uncommented=skip_uncommented)

    results = []
    for path, unit in zip(files, load_units(files, jobs=jobs)):
        if unit is None:
            continue
        unit.path = os.path.relpath(path, input_dir)
        t0 = time.perf_counter()
        result = classify_unit(unit, classifier)
        log(f"[INFO] {unit.path}: {len(result.abstracts)} root abstracts ({time.perf_counter() - t0:.3f}s)")
        results.append(result)
    return results


def group_units(
    results: list[UnitResult], key: Callable[[UnitResult], str] = lambda r: r.source
) -> dict[str, list[Abstract]]:
    """Merge per-unit forests under `key`, keeping first-seen key order."""
    groups: dict[str, list[Abstract]] = {}
    for r in results:
        groups.setdefault(key(r), []).extend(r.abstracts)
    return groups


def groups_to_json(groups: dict[str, list[Abstract]]) -> dict:
    return {
        "groups": [
            {"key": k, "abstracts": [a.to_dict() for a in forest]}
            for k, forest in groups.items()
        ]
    }


def write_json(groups: dict[str, list[Abstract]], out_dir: str) -> str:
    os.makedirs(out_dir, exist_ok=True)
    out_path = os.path.join(out_dir, OUTPUT_FILE)
    with open(out_path, "w", encoding="utf-8") as f:
        json.dump(groups_to_json(groups), f, indent=2, ensure_ascii=False)
    return out_path


def main(argv: Optional[list[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Classify parsed XMIR sources into documentation abstracts")
    parser.add_argument("--skip-uncommented", action="store_true", help="Skip abstracts and objects without comments")
    parser.add_argument("-i", "--input", default=DEFAULT_INPUT_DIR, help="Input directory containing parsed files")
    parser.add_argument("-o", "--output", default=DEFAULT_OUTPUT_DIR, help="Output directory for the JSON forest")
    parser.add_argument("--jobs", type=int, default=DEFAULT_JOBS, help="Parallel XMIR parsers (default: 1)")
    parser.add_argument("--quiet", action="store_true", help="Only print errors")
    args = parser.parse_args(argv)

    abstracts.VERBOSE = not args.quiet

    input_dir = args.input
    log(f"[INFO] Using input directory: {input_dir}")
    log(f"[INFO] Output will be generated in: {args.output}")
    if not os.path.isdir(input_dir) or not os.access(input_dir, os.R_OK):
        print(f"[ERROR] Input directory \"{input_dir}\" does not exist or is not readable.", file=sys.stderr, flush=True)
        return 1

    all_t0 = time.perf_counter()
    results = generate(input_dir, skip_uncommented=args.skip_uncommented, jobs=max(1, args.jobs))
    out_path = write_json(group_units(results), args.output)
    log(f"[TIME] Total execution time: {time.perf_counter() - all_t0:.3f}s")
    log(f"[INFO] Wrote {out_path}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
