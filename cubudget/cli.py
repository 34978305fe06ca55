#!/usr/bin/env python3
"""
ClickUp Budget Monitor
Command-line interface for budget alerts on ClickUp time tracking
"""

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import List

from .alert_manager import AlertManager, AlertNotFoundError, MissingTokenError
from .clickup_client import ClickUpApiError
from .config_manager import update_config_files, ConfigurationError
from .models import AlertConfig, RefreshAlertResult
from .validation import AlertValidationError

# Configure basic logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def parse_arguments(argv=None):
    """Parse command line arguments"""
    parser = argparse.ArgumentParser(
        description="ClickUp time budget alert monitor",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Show alerts with their last status
  cu-budget

  # Save a token and check it
  cu-budget --set-token pk_123 --test-connection

  # Create an alert from a JSON draft
  cu-budget --create alert.json

  # Refresh everything once
  cu-budget --refresh-all

  # Keep alerts fresh on their configured frequency
  cu-budget --scheduler
        """
    )

    actions = parser.add_mutually_exclusive_group()
    actions.add_argument('--list', action='store_true', help='List alerts (default action)')
    actions.add_argument('--summary', action='store_true', help='Show dashboard counts')
    actions.add_argument('--refresh', metavar='ID', help='Refresh a single alert')
    actions.add_argument('--refresh-all', action='store_true', help='Refresh all alerts')
    actions.add_argument('--scheduler', action='store_true', help='Start the automated scheduler')
    actions.add_argument('--test-connection', action='store_true', help='Test the ClickUp token')
    actions.add_argument('--clear-token', action='store_true', help='Remove the stored ClickUp token')
    actions.add_argument('--create', metavar='FILE', help='Create an alert from a JSON draft file')
    actions.add_argument('--update', nargs=2, metavar=('ID', 'FILE'), help='Replace an alert with a JSON draft file')
    actions.add_argument('--delete', metavar='ID', help='Delete an alert')
    actions.add_argument('--duplicate', metavar='ID', help='Duplicate an alert')
    actions.add_argument('--reorder', nargs='+', metavar='ID', help='Set alert order')
    actions.add_argument(
        '--update-config',
        action='store_true',
        help='Merge new default settings into your configuration file'
    )

    parser.add_argument('--set-token', metavar='TOKEN', help='Store a ClickUp personal token')
    parser.add_argument(
        '--config',
        type=str,
        default='config.json',
        help='Configuration file path (default: config.json)'
    )

    return parser.parse_args(argv)


def format_alert(alert: AlertConfig) -> str:
    snapshot = alert.last_snapshot
    if snapshot is None:
        return f"[{'never':>8}] {alert.name} ({alert.id}) - not refreshed yet"

    line = (
        f"[{snapshot.status:>8}] {alert.name} ({alert.id}) - "
        f"{snapshot.hours_used:.2f} h / {snapshot.budget_hours:.2f} h ({snapshot.percent_used}%) "
        f"| {snapshot.scope_summary}"
    )
    message = snapshot.error_message or snapshot.warning_message
    return f"{line}\n           {message}" if message else line


def print_results(results: List[RefreshAlertResult]) -> bool:
    for result in results:
        print(format_alert(result.alert))
    return all(result.success for result in results)


def load_draft(path: str) -> dict:
    with open(path, 'r') as f:
        return json.load(f)


def main(argv=None):
    """Main entry point"""
    args = parse_arguments(argv)

    # Handle configuration updates first
    if args.update_config or not Path(args.config).exists():
        try:
            update_config_files(args.config)
            if args.update_config:
                logger.info("Configuration file updated successfully")
                return
        except Exception as e:
            logger.error(f"Failed to update configuration file: {e}")
            sys.exit(1)

    try:
        manager = AlertManager.from_config_file(args.config)
    except ConfigurationError as e:
        logger.error(f"Configuration error: {e}")
        logger.error("Please run 'cu-budget --update-config' to create the configuration file")
        sys.exit(1)

    try:
        if args.set_token:
            manager.set_token(args.set_token)

        if args.test_connection:
            ok, teams, message = manager.test_connection()
            for team in teams:
                print(f"{team.id}\t{team.name}")
            if message:
                print(message)
            sys.exit(0 if ok else 1)

        elif args.clear_token:
            manager.clear_token()

        elif args.summary:
            summary = manager.summary()
            print(
                f"Active: {summary.active_alerts}  Green: {summary.green}  Yellow: {summary.yellow}  "
                f"Red: {summary.red}  Over budget: {summary.over_budget}"
            )

        elif args.refresh:
            result = manager.refresh_alert(args.refresh)
            if not print_results([result]):
                sys.exit(1)

        elif args.refresh_all:
            if not print_results(manager.refresh_all()):
                sys.exit(1)

        elif args.scheduler:
            manager.start_scheduler()

        elif args.create:
            alert = manager.create_alert(load_draft(args.create))
            print(f"Created alert {alert.id}")

        elif args.update:
            alert_id, path = args.update
            alert = manager.update_alert(alert_id, load_draft(path))
            print(f"Updated alert {alert.id}")

        elif args.delete:
            manager.delete_alert(args.delete)

        elif args.duplicate:
            alert = manager.duplicate_alert(args.duplicate)
            print(f"Created alert {alert.id}")

        elif args.reorder:
            for alert in manager.reorder_alerts(args.reorder):
                print(format_alert(alert))

        elif not args.set_token:
            alerts = manager.list_alerts()
            if not alerts:
                print("No alerts configured")
            for alert in alerts:
                print(format_alert(alert))

    except AlertValidationError as e:
        logger.error("Invalid alert draft:")
        for issue in e.issues:
            logger.error(f"  - {issue}")
        sys.exit(1)
    except (AlertNotFoundError, MissingTokenError, ClickUpApiError, ValueError, OSError) as e:
        logger.error(str(e))
        sys.exit(1)
    except KeyboardInterrupt:
        logger.info("Operation cancelled by user")
        sys.exit(1)


if __name__ == "__main__":
    main()
