"""Inventory management CLI.

Creates or drops the database schema, and runs the reservation sweep for
cron jobs that would rather not go through the HTTP endpoint.

Usage:
    python src/manage.py setup-db                 # Create all tables
    python src/manage.py drop-db                  # Drop all tables
    python src/manage.py reconcile [PRODUCT ...]  # Sweep stale reservations
"""

import argparse
import json
import sys


def setup_database():
    """Create the inventory database schema."""
    from inventory.domain import inventory
    from inventory.utils.db import setup_db

    print("Initializing inventory domain...")
    inventory.init()
    print("Creating inventory database schema...")
    providers = setup_db(inventory)
    print(f"  schema ready ({', '.join(providers) or 'no database providers'}).")
    print("Done.")


def drop_database():
    """Drop the inventory database schema."""
    from inventory.domain import inventory
    from inventory.utils.db import drop_db

    print("Initializing inventory domain...")
    inventory.init()
    print("Dropping inventory database schema...")
    providers = drop_db(inventory)
    print(f"  schema dropped ({', '.join(providers) or 'no database providers'}).")
    print("Done.")


def reconcile(product_ids=None):
    """Run the reservation sweep once and print its summary."""
    from inventory.domain import inventory
    from inventory.stock.reconciliation import ReconcileReservations
    from inventory.utils.logging import configure_logging

    configure_logging()
    inventory.init()
    with inventory.domain_context():
        summary = inventory.process(ReconcileReservations(product_ids=product_ids or []), asynchronous=False)
    print(json.dumps(summary, indent=2))
    return summary


def main():
    parser = argparse.ArgumentParser(description="Storefront inventory management")
    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("setup-db", help="Create all database tables")
    subparsers.add_parser("drop-db", help="Drop all database tables")

    reconcile_parser = subparsers.add_parser("reconcile", help="Drop expired and settled reservations")
    reconcile_parser.add_argument(
        "product_ids",
        nargs="*",
        help="Specific product(s) to reconcile (default: every product holding reservations)",
    )

    args = parser.parse_args()

    if args.command == "setup-db":
        setup_database()
    elif args.command == "drop-db":
        drop_database()
    elif args.command == "reconcile":
        reconcile(args.product_ids)
    else:
        parser.print_help()
        sys.exit(1)


if __name__ == "__main__":
    main()
