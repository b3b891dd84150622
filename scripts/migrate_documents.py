#!/usr/bin/env python3
from __future__ import annotations

import argparse
import logging
import os
import sys
from pathlib import Path

ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

from foundry.db.base import build_engine
from foundry.db.enums import MIGRATED_CONTAINERS, ContainerEnum
from foundry.db.migration import DEFAULT_BATCH_SIZE, migrate_containers


def main() -> int:
    parser = argparse.ArgumentParser(
        description="Copy the Foundry document containers from a source database into a target database."
    )
    parser.add_argument("--source-url", default=os.getenv("SOURCE_DATABASE_URL"))
    parser.add_argument("--target-url", default=os.getenv("TARGET_DATABASE_URL"))
    parser.add_argument(
        "--container",
        action="append",
        choices=[container.value for container in MIGRATED_CONTAINERS],
        help="Container to copy. Repeat to copy several (default: all).",
    )
    parser.add_argument("--batch-size", type=int, default=DEFAULT_BATCH_SIZE)
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s %(message)s")

    if not args.source_url or not args.target_url:
        print("Missing --source-url/SOURCE_DATABASE_URL or --target-url/TARGET_DATABASE_URL.", file=sys.stderr)
        return 2

    containers = [ContainerEnum(name) for name in args.container] if args.container else list(MIGRATED_CONTAINERS)
    report = migrate_containers(
        build_engine(args.source_url),
        build_engine(args.target_url),
        containers=containers,
        batch_size=args.batch_size,
    )
    for item in report.containers:
        print(f"{item.container}: fetched={item.fetched} upserted={item.upserted}")
    print(f"Done. upserted={report.total_upserted}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
