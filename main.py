"""GratBox command line: CSV-driven bulk operations against Intune, Entra ID and Autopilot.

Execution flow for the sync commands:
 1. Load configuration (tenant/client ids, Graph scopes, retry and sync settings).
 2. Sign in with MSAL (device code by default) and check the token carries every configured scope.
 3. Load the desired records from CSV.
 4. Fetch the live state from Graph, plan Add/Update/Remove/NoOp operations and apply them one at a
    time (or only preview them with --dry-run).
 5. Write a per-item CSV report and print the applied/skipped/errored summary.

Usage:
    python main.py login
    python main.py export intune --out devices.csv
    python main.py sync-group "Autopilot Devices" --csv members.csv --dry-run
    python main.py sync-tags --csv serials.csv --tag Kiosk
    python main.py sync-tags --csv serials.csv --mode SyncExact --yes
"""

import argparse
import os
import sys
import time
from typing import List, Optional

from gratbox.auth import GraphAuth
from gratbox.backoff import BackoffCaller
from gratbox.cache import RunCache
from gratbox.config import SYNC_MODES, AppConfig
from gratbox.csv_loader import load_records
from gratbox.errors import GratBoxError, ReportWriteError
from gratbox.graph_client import GraphClient
from gratbox.inventory import INVENTORY_SOURCES, export_inventory
from gratbox.logging_setup import setup_logging
from gratbox.models import DesiredRecord, SyncMode
from gratbox.reconciler import Reconciler
from gratbox.report import summarize, write_report
from gratbox.targets import (
    AUTOPILOT_TAG_ALIASES,
    AUTOPILOT_TAG_VALIDATORS,
    GROUP_MEMBER_ALIASES,
    GROUP_MEMBER_VALIDATORS,
    AutopilotTagTarget,
    GroupMembershipTarget,
    resolve_group_id,
)

EXIT_OK = 0
EXIT_ERRORS = 1
EXIT_ABORTED = 2


def build_client(cfg: AppConfig, auth: Optional[GraphAuth] = None) -> GraphClient:
    auth = auth or GraphAuth(cfg)
    return GraphClient(cfg, auth.get_token, caller=BackoffCaller.from_settings(cfg.retry))


def default_report_path(cfg: AppConfig, command: str) -> str:
    stamp = time.strftime("%Y%m%d-%H%M%S")
    return os.path.join(cfg.sync.report_dir, f"{command}-{stamp}.csv")


def confirm_destructive(mode: SyncMode, dry_run: bool, assume_yes: bool) -> bool:
    """SyncExact removes remote state, so a live run needs --yes or a typed confirmation."""
    if mode is not SyncMode.SYNC_EXACT or dry_run or assume_yes:
        return True
    if not sys.stdin.isatty():
        print("SyncExact removes anything not listed in the CSV. Re-run with --yes to confirm.", file=sys.stderr)
        return False
    answer = input("SyncExact will remove every entry not listed in the CSV. Type YES to continue: ")
    return answer.strip() == "YES"


def run_sync(cfg: AppConfig, args, target, desired: List[DesiredRecord], command: str) -> int:
    mode = SyncMode(args.mode or cfg.sync.mode)
    dry_run = args.dry_run or cfg.sync.dry_run
    if not confirm_destructive(mode, dry_run, args.yes):
        print("Cancelled.")
        return EXIT_ABORTED

    reconciler = Reconciler(target, mode=mode, dry_run=dry_run)
    rows = reconciler.run(desired)

    report_path = args.report or default_report_path(cfg, command)
    try:
        write_report(report_path, rows)
    except ReportWriteError as e:
        print(f"Warning: {e}", file=sys.stderr)
        report_path = None

    counts = summarize(rows)
    label = "DRY RUN " if dry_run else ""
    print(
        f"{label}{command} ({mode.value}): {counts['applied']} applied, {counts['skipped']} skipped, "
        f"{counts['errored']} errored, {counts['would_apply']} would apply"
    )
    print(f"Report: {report_path or 'not written'}")
    return EXIT_ERRORS if counts["errored"] else EXIT_OK


# ── Commands ────────────────────────────────────────────────────────────

def cmd_login(cfg: AppConfig, args) -> int:
    auth = GraphAuth(cfg)
    auth.get_token()
    print(f"Signed in. Token covers: {', '.join(cfg.graph.scope)}")
    return EXIT_OK


def cmd_export(cfg: AppConfig, args) -> int:
    client = build_client(cfg)
    out = args.out or default_report_path(cfg, f"export-{args.kind}")
    count = export_inventory(client, args.kind, out)
    print(f"Exported {count} {args.kind} device(s) to {out}")
    return EXIT_OK


def cmd_sync_group(cfg: AppConfig, args) -> int:
    desired = load_records(
        args.csv,
        GROUP_MEMBER_ALIASES,
        key_field="id",
        validators=GROUP_MEMBER_VALIDATORS,
        delimiter=args.delimiter or cfg.sync.delimiter,
    )
    client = build_client(cfg)
    group_id = resolve_group_id(client, args.group)
    target = GroupMembershipTarget(client, group_id, cache=RunCache())
    return run_sync(cfg, args, target, desired, "sync-group")


def cmd_sync_tags(cfg: AppConfig, args) -> int:
    desired = load_records(
        args.csv,
        AUTOPILOT_TAG_ALIASES,
        key_field="serial",
        validators=AUTOPILOT_TAG_VALIDATORS,
        delimiter=args.delimiter or cfg.sync.delimiter,
    )
    if args.tag is not None:
        # One tag for every listed serial overrides any tag column
        desired = [
            DesiredRecord(r.key, {**r.attributes, "groupTag": args.tag.strip()}, r.line) for r in desired
        ]
    client = build_client(cfg)
    target = AutopilotTagTarget(client, cache=RunCache())
    return run_sync(cfg, args, target, desired, "sync-tags")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="gratbox",
        description="CSV-driven bulk operations against Intune, Entra ID and Windows Autopilot.",
    )
    parser.add_argument("--config", help="Path to config.json (default: $GRATBOX_CONFIG or ./config.json)")
    parser.add_argument("--log-level", help="Override the configured log level")
    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("login", help="Sign in and verify the granted scopes")

    sub_export = subparsers.add_parser("export", help="Export a device inventory to CSV")
    sub_export.add_argument("kind", choices=sorted(INVENTORY_SOURCES))
    sub_export.add_argument("--out", help="Output CSV path")

    def add_sync_options(sub):
        sub.add_argument("--csv", required=True, help="Input CSV with the desired entries")
        sub.add_argument("--mode", choices=SYNC_MODES, help="AddOnly (default) or SyncExact")
        sub.add_argument("--dry-run", action="store_true", help="Plan and report without changing anything")
        sub.add_argument("--yes", action="store_true", help="Confirm a SyncExact run without prompting")
        sub.add_argument("--report", help="Report CSV path (default: <report_dir>/<command>-<time>.csv)")
        sub.add_argument("--delimiter", help="CSV delimiter (default from config)")

    sub_group = subparsers.add_parser("sync-group", help="Add/remove Entra ID group members from a CSV")
    sub_group.add_argument("group", help="Group object id or exact display name")
    add_sync_options(sub_group)

    sub_tags = subparsers.add_parser("sync-tags", help="Set/clear Autopilot group tags from a CSV")
    sub_tags.add_argument("--tag", help="Apply this tag to every listed serial (empty string clears)")
    add_sync_options(sub_tags)

    return parser


COMMANDS = {
    "login": cmd_login,
    "export": cmd_export,
    "sync-group": cmd_sync_group,
    "sync-tags": cmd_sync_tags,
}


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    try:
        cfg = AppConfig.load(args.config)
    except (FileNotFoundError, KeyError, TypeError, ValueError) as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return EXIT_ERRORS
    setup_logging(args.log_level or cfg.log_level, cfg.log_file)

    try:
        return COMMANDS[args.command](cfg, args)
    except GratBoxError as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return EXIT_ERRORS


if __name__ == "__main__":
    raise SystemExit(main())
