#!/usr/bin/env python3
"""
Kibela Content Migrator - Main CLI Entry Point

Talks to the destination team through the Kibela GraphQL API:

- ``ping`` checks connectivity and credentials
- ``unimport`` deletes everything recorded in transaction logs
"""

import argparse
import json
import logging
import os
import sys
from typing import List, Optional

from config_loader import ConfigLoader, get_nested, require_env
from kibela import KibelaClient, KibelaClientError
from logger import log_config, log_section, setup_logging
from migration import Unimporter, ping

__version__ = "1.0.0"
USER_AGENT = f"kibela-content-migrator/{__version__}"


def create_argument_parser() -> argparse.ArgumentParser:
    """Create and configure the argument parser for CLI."""
    parser = argparse.ArgumentParser(
        description="Migrate content between Kibela teams through the GraphQL API",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Check credentials
  KIBELA_TEAM=my-team KIBELA_TOKEN=secret python migrate.py ping

  # Preview what an unimport would delete
  python migrate.py unimport transaction-20240101120000-abc.log

  # Really delete migrated resources
  python migrate.py unimport --apply transaction-20240101120000-abc.log
        """
    )

    parser.add_argument(
        '--version',
        action='version',
        version=f'%(prog)s {__version__}'
    )

    parser.add_argument(
        '--config',
        type=str,
        default='config.yaml',
        help='Path to configuration YAML file (default: config.yaml, optional)'
    )

    parser.add_argument(
        '--json',
        action='store_true',
        help='Use JSON instead of MessagePack in serialization for debugging'
    )

    parser.add_argument(
        '--log-file',
        type=str,
        help='Also write logs to this file'
    )

    parser.add_argument(
        '-v', '--verbose',
        action='count',
        default=0,
        help='Increase verbosity (-v for INFO, -vv for DEBUG)'
    )

    subparsers = parser.add_subparsers(dest='command', required=True)

    subparsers.add_parser('ping', help='Query the current user to check connectivity')

    unimport = subparsers.add_parser('unimport', help='Delete resources recorded in transaction logs')
    unimport.add_argument(
        '--apply',
        action='store_true',
        help='Apply the actual change to the target team; default to dry-run mode.'
    )
    unimport.add_argument('log_files', nargs='+', help='Transaction log files')

    return parser


def load_configuration(args: argparse.Namespace) -> dict:
    """Load the config file if present, else the environment, then apply CLI flags."""
    if args.config and os.path.exists(args.config):
        config = ConfigLoader.load(args.config)
    else:
        require_env('KIBELA_TEAM')
        require_env('KIBELA_TOKEN')
        config = ConfigLoader.from_environment()

    config = ConfigLoader.merge_with_args(config, args)
    ConfigLoader.validate(config)
    return config


def run_ping(client: KibelaClient) -> int:
    response = ping(client)
    print(json.dumps(response.to_dict(), indent=2, ensure_ascii=False, default=str))
    return 0


def run_unimport(client: KibelaClient, config: dict, log_files: List[str], logger: logging.Logger) -> int:
    apply = not get_nested(config, 'migration.dry_run', True)
    if not apply:
        logger.warning("Dry-run mode: nothing will be deleted (use --apply)")

    unimporter = Unimporter(client, apply=apply, show_progress=True)
    stats = unimporter.unimport_logs(log_files)
    return 1 if stats['failed'] else 0


def main(argv: Optional[List[str]] = None, client: Optional[KibelaClient] = None) -> int:
    """Main entry point for the CLI."""
    parser = create_argument_parser()
    args = parser.parse_args(argv)

    try:
        config = load_configuration(args)

        logger = setup_logging(
            verbosity=args.verbose,
            log_file=get_nested(config, 'logging.file'),
            level=get_nested(config, 'logging.level')
        )
        log_section("Kibela Content Migrator")
        logger.info(f"Version: {__version__}")
        log_config(config)

        if client is None:
            client = KibelaClient.from_config(config, user_agent=USER_AGENT)

        if args.command == 'ping':
            return run_ping(client)
        return run_unimport(client, config, args.log_files, logger)

    except FileNotFoundError as e:
        print(f"ERROR: File not found: {e}", file=sys.stderr)
        return 2
    except ValueError as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return 2
    except KibelaClientError as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        print("\nInterrupted by user", file=sys.stderr)
        return 130


if __name__ == "__main__":
    sys.exit(main())
