"""Parallax MCP diagnostics CLI."""

from __future__ import annotations

import argparse
import json
from dataclasses import asdict

from parallax_mcp.config import ParallaxSettings
from parallax_mcp.storage import ChromaJournal, ChromaUnavailableError


def load_journal(settings: ParallaxSettings) -> ChromaJournal:
    journal = ChromaJournal(settings.journal_path)
    try:
        journal.ping()
    except ChromaUnavailableError as exc:
        print(f"Chroma unavailable: {exc}")
        raise SystemExit(1)
    return journal


def _dump(records) -> str:
    return json.dumps([asdict(record) for record in records], indent=2, default=str)


def cmd_worktrees(args: argparse.Namespace) -> None:
    journal = load_journal(ParallaxSettings())
    records = journal.list_worktrees(branch=args.branch)
    if args.active:
        latest: dict[tuple[str, str], object] = {}
        for record in records:
            latest[(record.repo_root, record.branch)] = record
        records = [record for record in latest.values() if record.status == "active"]
    print(_dump(records))


def cmd_transactions(args: argparse.Namespace) -> None:
    journal = load_journal(ParallaxSettings())
    records = journal.list_transactions(operation=args.operation, outcome=args.outcome)
    if args.limit is not None and args.limit > 0:
        records = records[-args.limit :]
    print(_dump(records))


def cmd_metrics(args: argparse.Namespace) -> None:
    journal = load_journal(ParallaxSettings())
    worktrees = journal.list_worktrees()
    transactions = journal.list_transactions()

    worktree_counts: dict[str, int] = {}
    for record in worktrees:
        worktree_counts[record.status] = worktree_counts.get(record.status, 0) + 1

    by_operation: dict[str, dict[str, int]] = {}
    failed_branches: dict[str, int] = {}
    for record in transactions:
        counts = by_operation.setdefault(record.operation, {})
        counts[record.outcome] = counts.get(record.outcome, 0) + 1
        if record.outcome == "failed" and record.branch:
            failed_branches[record.branch] = failed_branches.get(record.branch, 0) + 1

    metrics = {
        "worktree_events": len(worktrees),
        "worktree_status_counts": worktree_counts,
        "transactions_total": len(transactions),
        "transactions_by_operation": by_operation,
        "failed_branches": [
            {"branch": branch, "failure_count": count}
            for branch, count in sorted(failed_branches.items(), key=lambda item: -item[1])
        ],
    }

    print(json.dumps(metrics, indent=2))


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Parallax MCP diagnostics")
    sub = parser.add_subparsers(dest="cmd")

    p_worktrees = sub.add_parser("worktrees", help="List journaled worktree records")
    p_worktrees.add_argument("--branch")
    p_worktrees.add_argument(
        "--active",
        action="store_true",
        help="Show only worktrees whose latest record is still active",
    )
    p_worktrees.set_defaults(func=cmd_worktrees)

    p_transactions = sub.add_parser("transactions", help="List merge/rebase/push records")
    p_transactions.add_argument("--operation", choices=["merge", "rebase", "push"])
    p_transactions.add_argument("--outcome", choices=["succeeded", "failed"])
    p_transactions.add_argument(
        "--limit",
        type=int,
        default=None,
        help="If provided, show only the latest N records",
    )
    p_transactions.set_defaults(func=cmd_transactions)

    p_metrics = sub.add_parser("metrics", help="Show worktree and transaction counts")
    p_metrics.set_defaults(func=cmd_metrics)

    return parser


def main(argv: list[str] | None = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)
    if not hasattr(args, "func"):
        parser.print_help()
        return
    args.func(args)


if __name__ == "__main__":
    main()
