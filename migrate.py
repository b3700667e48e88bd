#!/usr/bin/env python3
"""
Bring an existing memory database up to date.

- Creates missing tables and indexes
- Re-derives the `project` column from each memory's metadata
- Removes relations whose endpoints no longer exist

Usage:
    agentic-memory-migrate --dry-run  # Preview changes
    agentic-memory-migrate            # Apply migration
"""

from __future__ import annotations

import argparse
import sys
from collections import defaultdict
from dataclasses import dataclass, field
from pathlib import Path

import memory_store
from memory_store import get_memories_table, get_relations_table, scan
from models import CONFIG, Memory
from utils import escape_filter_value, in_filter, load_metadata, project_of


@dataclass
class MigrationPlan:
    # memory id -> (stored project, derived project)
    project_fixes: dict[str, tuple[str | None, str | None]] = field(default_factory=dict)
    orphaned_relations: list[str] = field(default_factory=list)

    @property
    def empty(self) -> bool:
        return not self.project_fixes and not self.orphaned_relations


def plan_migration() -> MigrationPlan:
    """Find memories whose project column disagrees with metadata, and dangling relations."""
    plan = MigrationPlan()
    memory_ids = set()
    for row in scan(get_memories_table()):
        memory_ids.add(row["id"])
        derived = project_of(load_metadata(row.get("metadata")))
        if derived != row.get("project"):
            plan.project_fixes[row["id"]] = (row.get("project"), derived)

    for relation in scan(get_relations_table()):
        endpoints = (relation["from_memory_id"], relation["to_memory_id"])
        if any(endpoint not in memory_ids for endpoint in endpoints):
            plan.orphaned_relations.append(relation["id"])
    return plan


def apply_migration(plan: MigrationPlan) -> int:
    """Apply a plan. Returns the number of rows changed."""
    changes = 0
    table = get_memories_table()
    for memory_id, (_, derived) in plan.project_fixes.items():
        where = f"id = '{escape_filter_value(memory_id)}'"
        results = table.search().where(where).limit(1).to_list()
        if not results:
            print(f"Warning: Memory {memory_id} not found, skipping")
            continue
        row = {k: v for k, v in results[0].items() if not k.startswith("_")}
        row["project"] = derived
        memory = Memory(**row)
        # Delete old and add updated
        table.delete(where)
        table.add([memory.model_dump()])
        changes += 1

    if plan.orphaned_relations:
        get_relations_table().delete(in_filter("id", plan.orphaned_relations))
        changes += len(plan.orphaned_relations)
    return changes


def print_plan(plan: MigrationPlan) -> None:
    print("=" * 70)
    print("MIGRATION PLAN")
    print("=" * 70)

    if plan.project_fixes:
        moves: dict[tuple[str | None, str | None], int] = defaultdict(int)
        for move in plan.project_fixes.values():
            moves[move] += 1
        print("\nProject column corrections:\n")
        for (old, new), count in sorted(moves.items(), key=lambda x: str(x[0])):
            print(f"  {count:3d} memories: {old or 'default'} -> {new or 'default'}")
    else:
        print("\n✓ Project column matches metadata for every memory")

    if plan.orphaned_relations:
        print(f"\nOrphaned relations to remove: {len(plan.orphaned_relations)}")
    else:
        print("✓ No orphaned relations")
    print("\n" + "=" * 70)


def migrate(db_path: Path, dry_run: bool = True) -> int:
    """Plan (and unless dry_run, apply) the migration. Returns rows changed."""
    if db_path != CONFIG.db_path:
        object.__setattr__(CONFIG, "db_path", db_path)
        memory_store.reset_connection()

    print(f"Opening database: {db_path}")
    get_memories_table()
    get_relations_table()
    memory_store.ensure_indexes()

    plan = plan_migration()
    print_plan(plan)

    if dry_run:
        print("\n⚠ DRY RUN MODE - No changes applied")
        print("Run without --dry-run to apply migration")
        return 0
    if plan.empty:
        return 0

    print("\nApplying migration...")
    changes = apply_migration(plan)
    print(f"\n✓ Migration complete! Updated {changes} rows")
    return changes


def main():
    parser = argparse.ArgumentParser(
        description="Create missing tables/indexes and repair derived data",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  agentic-memory-migrate --dry-run  # Preview changes
  agentic-memory-migrate            # Apply migration
        """,
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Preview changes without applying them",
    )
    parser.add_argument(
        "--db-path",
        type=Path,
        default=CONFIG.db_path,
        help=f"Database directory (default: {CONFIG.db_path})",
    )

    args = parser.parse_args()

    try:
        migrate(args.db_path, dry_run=args.dry_run)
    except KeyboardInterrupt:
        print("\n\nMigration cancelled")
        sys.exit(1)


if __name__ == "__main__":
    main()
