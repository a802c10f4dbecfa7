"""eSIM fulfillment management CLI.

Database schema management plus the scheduled jobs, for running them from
a plain cron entry instead of the HTTP endpoints.

Usage:
    python src/manage.py setup-db            # Create all tables
    python src/manage.py drop-db             # Drop all tables
    python src/manage.py sweep               # Re-queue orders stuck mid-flight
    python src/manage.py process-pending     # Fulfill paid orders waiting for a supplier
    python src/manage.py health-check        # Ping every active supplier
    python src/manage.py bulk-retry ID...    # Send failed orders back to pending
"""

import argparse
import json
import sys


def _domain():
    from provisioning.domain import provisioning

    provisioning.init()
    return provisioning


def setup_database():
    from provisioning.utils.db import setup_db

    domain = _domain()
    print("Creating provisioning database schema...")
    setup_db(domain)
    print("Done.")


def drop_database():
    from provisioning.utils.db import drop_db

    domain = _domain()
    print("Dropping provisioning database schema...")
    drop_db(domain)
    print("Done.")


def sweep():
    from provisioning.sweeper.stuck_orders import sweep_stuck_orders

    domain = _domain()
    with domain.domain_context():
        report = sweep_stuck_orders()
    print(
        json.dumps(
            {
                "skipped": report.skipped,
                "reason": report.reason,
                "processed": report.processed,
                "retried": report.retried,
                "failed": report.failed,
                "errors": report.errors,
            }
        )
    )


def process_pending(limit: int):
    from provisioning.order.orchestrator import process_pending_orders

    domain = _domain()
    with domain.domain_context():
        outcomes = process_pending_orders(limit=limit)
    for outcome in outcomes:
        print(f"{outcome.order_id}: {outcome.status}" + (f" ({outcome.error})" if outcome.error else ""))
    print(f"Processed {len(outcomes)} order(s).")


def health_check():
    from provisioning.provider.health import HealthStatus, run_provider_health_check

    domain = _domain()
    with domain.domain_context():
        report = run_provider_health_check()
    if report.skipped:
        print(f"Skipped: {report.reason} ({report.held_by})")
        return
    for result in report.results:
        detail = f" ({result.error_message})" if result.error_message else ""
        print(f"{result.provider_id}: {result.status.value} in {result.response_time_ms}ms{detail}")
    print(", ".join(f"{s.value}={report.count(s)}" for s in HealthStatus))


def bulk_retry(order_ids: list[str]):
    from provisioning.order.administration import bulk_retry_orders

    domain = _domain()
    with domain.domain_context():
        report = bulk_retry_orders(order_ids, initiated_by="cli")
    for item in report.items:
        print(f"{item.order_id}: {item.outcome.value}" + (f" ({item.reason})" if item.reason else ""))


def main():
    parser = argparse.ArgumentParser(description="eSIM fulfillment management")
    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("setup-db", help="Create all database tables")
    subparsers.add_parser("drop-db", help="Drop all database tables")
    subparsers.add_parser("sweep", help="Re-queue orders stuck mid-flight")
    pending_parser = subparsers.add_parser("process-pending", help="Fulfill paid orders waiting for a supplier")
    pending_parser.add_argument("--limit", type=int, default=50, help="Maximum orders per run (default: 50)")
    subparsers.add_parser("health-check", help="Ping every active supplier")
    bulk_parser = subparsers.add_parser("bulk-retry", help="Send failed or stuck orders back to pending")
    bulk_parser.add_argument("order_ids", nargs="+", help="Order ids to retry")

    args = parser.parse_args()

    if args.command == "setup-db":
        setup_database()
    elif args.command == "drop-db":
        drop_database()
    elif args.command == "sweep":
        sweep()
    elif args.command == "process-pending":
        process_pending(args.limit)
    elif args.command == "health-check":
        health_check()
    elif args.command == "bulk-retry":
        bulk_retry(args.order_ids)
    else:
        parser.print_help()
        sys.exit(1)


if __name__ == "__main__":
    main()
