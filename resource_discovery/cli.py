"""
Command line entry point.

Usage:
    # Show the stored organization, or crawl it again
    resource-discovery organization [--discover]

    # Show or discover Config service state for every account, or one
    resource-discovery config [--account-id 222222222222] [--discover]

    # Show, ingest or request configuration snapshots
    resource-discovery snapshots [--account-id ID] [--region-id us-east-1] [--ingest | --deliver]

    # Recreate indices and templates (deletes every aws* index)
    resource-discovery setup-database
"""

import argparse
import json
import sys

from .logs import configure_logging
from .service import ResourceDiscoveryService
from .settings import load_config


def parse_args(argv=None):
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        prog="resource-discovery",
        description="Discover AWS Organization and AWS Config state into a search index",
    )
    parser.add_argument("--config", help="Path of the YAML configuration file")
    commands = parser.add_subparsers(dest="command", required=True)

    organization = commands.add_parser("organization", help="Organization document")
    organization.add_argument(
        "--discover", action="store_true", help="Crawl the organization before showing it"
    )

    config = commands.add_parser("config", help="Config service state per account")
    config.add_argument("--account-id", help="Only this account")
    config.add_argument(
        "--discover", action="store_true", help="Discover Config state before showing it"
    )

    snapshots = commands.add_parser("snapshots", help="Configuration snapshots")
    snapshots.add_argument("--account-id", help="Only this account")
    snapshots.add_argument("--region-id", help="Only this region")
    action = snapshots.add_mutually_exclusive_group()
    action.add_argument("--ingest", action="store_true", help="Ingest new snapshots")
    action.add_argument(
        "--deliver", action="store_true", help="Request a fresh snapshot delivery"
    )

    commands.add_parser("setup-database", help="Recreate indices and templates")
    return parser.parse_args(argv)


def run(service: ResourceDiscoveryService, args):
    """Dispatch ``args`` to the matching service call."""
    if args.command == "organization":
        if args.discover:
            return service.discover_organization_info()
        return service.get_organization_info()

    if args.command == "config":
        if args.discover:
            return service.discover_config_for_account(args.account_id)
        return service.get_config_for_account(args.account_id)

    if args.command == "snapshots":
        if args.ingest:
            return service.ingest_from_snapshot(args.account_id, args.region_id)
        if args.deliver:
            return service.deliver_snapshot(args.account_id, args.region_id)
        return service.get_snapshots(args.account_id, args.region_id)

    return service.setup_database()


def main(argv=None) -> int:
    """Main function."""
    args = parse_args(argv)

    try:
        config = load_config(args.config)
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    configure_logging(config["log_level"])

    print("=" * 60, file=sys.stderr)
    print(f"  Resource Discovery: {args.command}", file=sys.stderr)
    print("=" * 60, file=sys.stderr)

    result = run(ResourceDiscoveryService(config), args)
    if result is None or result is False:
        print("Operation failed, see log output for details", file=sys.stderr)
        return 1

    print(json.dumps(result, indent=2, default=str))
    return 0


if __name__ == "__main__":
    sys.exit(main())
