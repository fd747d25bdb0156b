"""Command-line interface for the Gmail invoice sync."""

import argparse
import json
import logging
import sys

from mailinvoicer import Config, ScanMode, connect_account, disconnect_account, run_sync


def print_summary(user_id: str, summary: dict) -> None:
    """Print a scan summary.

    Args:
        user_id: User that was scanned
        summary: Result of run_sync
    """
    print("\n" + "=" * 80)
    print(f"SYNC SUMMARY ({user_id})")
    print("=" * 80)

    if "error" in summary:
        print(f"Sync failed: {summary['error']}")
        return

    print(f"Candidate emails found: {summary['total_emails']}")
    print(f"Attachments classified: {summary['processed']}")
    print(f"Invoices created: {summary['invoices_found']}")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Scan Gmail for invoices")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")
    parser.add_argument("--json", action="store_true", help="Print raw JSON instead of a summary")
    commands = parser.add_subparsers(dest="command", required=True)

    sync = commands.add_parser("sync", help="Scan a user's mailbox")
    sync.add_argument("user_id")
    sync.add_argument(
        "--mode",
        choices=[m.value for m in ScanMode],
        default=ScanMode.INCREMENTAL.value,
    )

    connect = commands.add_parser("connect", help="Exchange an authorization code and run the initial scan")
    connect.add_argument("user_id")
    connect.add_argument("code")

    disconnect = commands.add_parser("disconnect", help="Remove a user's Gmail credential")
    disconnect.add_argument("user_id")

    return parser


def main(argv=None) -> int:
    """Main CLI entry point."""
    args = build_parser().parse_args(argv)
    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.INFO)

    config = Config.from_env()

    if args.command == "disconnect":
        deleted = disconnect_account(args.user_id, config)
        print(f"Disconnected {args.user_id}" if deleted else f"{args.user_id} was not connected")
        return 0

    mode = args.mode if args.command == "sync" else ScanMode.INITIAL.value
    if args.command == "connect":
        credential = connect_account(args.user_id, args.code, config)
        print(f"Connected {credential.mail_address}")

    summary = run_sync(args.user_id, mode, config)
    if args.json:
        print(json.dumps(summary, indent=2))
    else:
        print_summary(args.user_id, summary)
    return 1 if "error" in summary else 0


if __name__ == "__main__":
    sys.exit(main())
