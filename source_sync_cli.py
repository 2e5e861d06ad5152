#!/usr/bin/env python3
"""
CLI Interface for Multi-Source Listing Reconciliation

Provides commands for:
- Comparing one property across all providers
- Refreshing the provider cache for one agency or all agencies
- Listing field mappings
- Viewing sync history
- Running the full-sync scheduler as a daemon

Usage:
    python source_sync_cli.py compare 12 ABC123
    python source_sync_cli.py sync-agency 12
    python source_sync_cli.py sync-all
    python source_sync_cli.py mappings
    python source_sync_cli.py history
    python source_sync_cli.py daemon
"""

import argparse
import asyncio
import json
import logging
import os
import sys
from datetime import datetime

from dotenv import load_dotenv
from supabase import create_client, Client

from config.sync_config import get_config, SourceSyncConfig
from services.agency_service import AgencyNotFound
from services.field_mapping_service import FieldMappingService, MappingStoreUnavailable
from services.field_reconciliation_service import CellStatus, Classification
from services.scheduler_service import SchedulerService
from services.source_sync_orchestrator import SourceSyncOrchestrator

# Load environment variables
load_dotenv()

logger = logging.getLogger(__name__)

CLASSIFICATION_MARKERS = {
    Classification.PRIMARY: '★',
    Classification.UNIQUE: '!',
    Classification.SHARED_WITH_OTHERS: '~',
    Classification.MATCHES_PRIMARY: ' ',
}


def setup_logging(config: SourceSyncConfig):
    """Configure console and file logging from the sync config."""
    logging.basicConfig(
        level=getattr(logging, str(config.log_level).upper(), logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[
            logging.StreamHandler(),
            logging.FileHandler(config.log_file)
        ]
    )


def get_supabase_client() -> Client:
    """Create and return a Supabase client."""
    url = os.getenv('SUPABASE_URL')
    # Support both SUPABASE_KEY and SUPABASE_ANON_KEY for compatibility
    key = os.getenv('SUPABASE_KEY') or os.getenv('SUPABASE_ANON_KEY')

    if not url or not key:
        print("Error: SUPABASE_URL and SUPABASE_ANON_KEY environment variables required")
        sys.exit(1)

    return create_client(url, key)


def create_services(supabase: Client):
    """Create all required service instances."""
    config = get_config()

    orchestrator = SourceSyncOrchestrator(
        supabase, config, api_token=os.getenv('PROVIDER_API_TOKEN')
    )
    scheduler = SchedulerService(supabase, config, orchestrator)

    return {
        'config': config,
        'orchestrator': orchestrator,
        'scheduler': scheduler,
        'mappings': orchestrator.mapping_service,
    }


def _truncate(text: str, width: int) -> str:
    text = text.replace('\n', ' ')
    return text if len(text) <= width else text[:width - 1] + '…'


async def cmd_compare(args):
    """Compare one property across every provider."""
    supabase = get_supabase_client()
    services = create_services(supabase)
    orchestrator = services['orchestrator']
    config = services['config']

    try:
        comparison = await orchestrator.compare_property(
            args.agency_id, args.external_id,
            force_refresh=args.force,
            primary_source_override=args.primary
        )
    except (AgencyNotFound, MappingStoreUnavailable) as e:
        print(f"\nError: {e}")
        sys.exit(1)
    except Exception as e:
        print(f"\nError comparing property: {e}")
        logger.exception("Compare error")
        sys.exit(1)

    if args.json:
        print(json.dumps(comparison.to_dict(), indent=2, default=str))
        return

    print("\n" + "=" * 100)
    print(f"PROPERTY {comparison.external_id} (agency {comparison.agency_id})")
    print("=" * 100)

    headers = {source.provider: source for source in comparison.sources}
    print("\nSources:")
    for provider in comparison.display_order:
        source = headers[provider]
        if source.error:
            state = f"❌ {source.error}"
        elif source.from_cache:
            state = f"💾 cached {source.last_fetched or ''}".rstrip()
        else:
            state = "✅ fetched"
        preferred = ' (preferred)' if source.is_preferred else ''
        print(f"  {source.title:<12}{preferred:<13} {state}")

    column = 22
    print("\n" + "-" * 100)
    print(f"{'Field':<20} " + " ".join(
        f"{config.get_provider(p).display_name:<{column}}" for p in comparison.display_order
    ))
    print("-" * 100)

    for row in comparison.rows:
        cells = []
        for provider in comparison.display_order:
            cell = row.cell(provider)
            if cell is None or cell.status == CellStatus.INACTIVE:
                text = '-'
            elif cell.status == CellStatus.ABSENT:
                text = ''
            else:
                marker = CLASSIFICATION_MARKERS.get(cell.classification, ' ')
                shown = cell.display_value if cell.display_value is not None else json.dumps(cell.value, default=str)
                text = f"{marker} {shown}"
            cells.append(f"{_truncate(text, column):<{column}}")
        print(f"{_truncate(row.field_name, 20):<20} " + " ".join(cells))

    print("-" * 100)
    flagged = sum(1 for row in comparison.rows if row.has_discrepancy)
    print(f"\n{len(comparison.rows)} fields, {flagged} with discrepancies "
          f"({comparison.duration_seconds:.1f}s)")
    print("Legend: ★ primary  ! unique  ~ shared with others  - inactive source")
    print()


def _print_agency_result(result):
    status = '✅' if result.success else '❌'
    print(f"\n{status} {result.agency_name} ({result.agency_id}): "
          f"{result.properties_processed} properties in {result.duration_seconds:.1f}s")
    for provider, stats in result.sources.items():
        if stats.skipped:
            print(f"    {provider:<14} skipped: {stats.skipped}")
        else:
            print(f"    {provider:<14} {stats.synced} synced, {stats.cached} cached, {stats.errors} errors")
    for error in result.errors:
        print(f"    - {error}")


async def cmd_sync_agency(args):
    """Refresh the provider cache for one agency."""
    print("\n" + "=" * 60)
    print(f"SYNCING AGENCY {args.agency_id}")
    print("=" * 60)
    print(f"Started: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}")

    supabase = get_supabase_client()
    services = create_services(supabase)
    orchestrator = services['orchestrator']

    try:
        result = await orchestrator.sync_agency(args.agency_id, force_refresh=args.force)
        _print_agency_result(result)
        print()
    except AgencyNotFound as e:
        print(f"\nError: {e}")
        sys.exit(1)
    except Exception as e:
        print(f"\nError syncing agency: {e}")
        logger.exception("Agency sync error")
        sys.exit(1)


async def cmd_sync_all(args):
    """Refresh the provider cache for every agency."""
    print("\n" + "=" * 60)
    print("SYNCING ALL AGENCIES")
    print("=" * 60)
    print(f"Started: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}")

    supabase = get_supabase_client()
    services = create_services(supabase)
    orchestrator = services['orchestrator']

    try:
        result = await orchestrator.sync_all_agencies(force_refresh=args.force)

        for agency_result in result.agencies:
            _print_agency_result(agency_result)

        print("\n" + "-" * 60)
        print(f"Status: {'✅ Success' if result.success else '❌ Failed'}")
        print(f"Agencies: {len(result.agencies)}")
        print(f"Properties Processed: {result.properties_processed}")
        print(f"Duration: {result.duration_seconds:.1f} seconds")
        print()

    except Exception as e:
        print(f"\nError running full sync: {e}")
        logger.exception("Full sync error")
        sys.exit(1)


async def cmd_mappings(args):
    """List configured field mappings."""
    supabase = get_supabase_client()
    mapping_service = FieldMappingService(supabase)
    config = get_config()

    try:
        mappings = await mapping_service.list_field_mappings()
    except MappingStoreUnavailable as e:
        print(f"\nError: {e}")
        sys.exit(1)

    print("\n" + "=" * 100)
    print("FIELD MAPPINGS")
    print("=" * 100)
    print(f"{'Order':<6} {'Field':<22} " + " ".join(
        f"{config.get_provider(p).display_name:<17}" for p in config.canonical_order
    ))
    print("-" * 100)
    for mapping in mappings:
        paths = " ".join(
            f"{_truncate(mapping.path_for(p) or '-', 17):<17}" for p in config.canonical_order
        )
        print(f"{mapping.order:<6} {_truncate(mapping.field_name, 22):<22} {paths}")
    print("-" * 100)
    print(f"{len(mappings)} mappings\n")


async def cmd_history(args):
    """Show sync run history."""
    print("\n" + "=" * 60)
    print("SYNC RUN HISTORY")
    print("=" * 60)

    supabase = get_supabase_client()
    services = create_services(supabase)
    orchestrator = services['orchestrator']

    try:
        history = await orchestrator.get_sync_history(args.type, args.limit)

        if not history:
            print("\nNo sync runs found.")
        else:
            print(f"\nShowing {len(history)} most recent runs:")
            print("-" * 90)
            print(f"{'Type':<8} {'Agency':<8} {'Started':<20} {'Status':<12} {'Duration':<10} {'Props':<7} {'Errors':<7}")
            print("-" * 90)

            for run in history:
                run_type = run.get('run_type', '?')
                agency = str(run.get('agency_id') or '-')
                started = (run.get('started_at') or '')[:19].replace('T', ' ')
                status = run.get('status', 'unknown')
                duration_ms = run.get('execution_time_ms', 0) or 0
                duration = f"{duration_ms / 1000:.1f}s" if duration_ms else '-'
                processed = run.get('properties_processed', 0) or 0
                errors = run.get('source_errors', 0) or 0

                status_icon = {
                    'completed': '✅',
                    'failed': '❌',
                    'running': '🔄',
                }.get(status, '❓')

                print(f"{run_type:<8} {agency:<8} {started:<20} {status_icon} {status:<10} "
                      f"{duration:<10} {processed:<7} {errors:<7}")

        print("-" * 90)
        print()

    except Exception as e:
        print(f"\nError getting history: {e}")
        logger.exception("History error")
        sys.exit(1)


async def cmd_run_daemon(args):
    """Run the full-sync scheduler as a continuous daemon."""
    interval = args.interval

    print("\n" + "=" * 60)
    print("STARTING SOURCE SYNC DAEMON")
    print("=" * 60)
    print(f"Check Interval: {interval} seconds")
    print(f"Started: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}")
    print("\nPress Ctrl+C to stop...")
    print()

    supabase = get_supabase_client()
    services = create_services(supabase)
    scheduler = services['scheduler']

    try:
        await scheduler.run_continuous(check_interval_seconds=interval)
    except KeyboardInterrupt:
        print("\n\nDaemon stopped by user.")
    except Exception as e:
        print(f"\nDaemon error: {e}")
        logger.exception("Daemon error")
        sys.exit(1)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description='Multi-Source Listing Reconciliation CLI',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s compare 12 ABC123            Compare property ABC123 of agency 12
  %(prog)s compare 12 ABC123 --force    Re-fetch every provider first
  %(prog)s compare 12 ABC123 --json     Print the comparison as JSON
  %(prog)s sync-agency 12               Refresh the cache for agency 12
  %(prog)s sync-all                     Refresh the cache for all agencies
  %(prog)s mappings                     List field mappings
  %(prog)s history --limit 20           Show last 20 sync runs
  %(prog)s daemon --interval 600        Run as daemon, check every 10 minutes
        """
    )

    subparsers = parser.add_subparsers(dest='command', help='Available commands')

    # Compare command
    compare_parser = subparsers.add_parser('compare', help='Compare one property across providers')
    compare_parser.add_argument('agency_id', type=int, help='Agency id')
    compare_parser.add_argument('external_id', help='Property reference (ListReff)')
    compare_parser.add_argument('--force', action='store_true', help='Bypass the provider cache')
    compare_parser.add_argument('--primary', help='Per-property primary source override')
    compare_parser.add_argument('--json', action='store_true', help='Output JSON')
    compare_parser.set_defaults(func=cmd_compare)

    # Sync agency command
    sync_agency_parser = subparsers.add_parser('sync-agency', help='Refresh the cache for one agency')
    sync_agency_parser.add_argument('agency_id', type=int, help='Agency id')
    sync_agency_parser.add_argument('--force', action='store_true', help='Re-fetch fresh cache entries too')
    sync_agency_parser.set_defaults(func=cmd_sync_agency)

    # Sync all command
    sync_all_parser = subparsers.add_parser('sync-all', help='Refresh the cache for all agencies')
    sync_all_parser.add_argument('--force', action='store_true', help='Re-fetch fresh cache entries too')
    sync_all_parser.set_defaults(func=cmd_sync_all)

    # Mappings command
    mappings_parser = subparsers.add_parser('mappings', help='List field mappings')
    mappings_parser.set_defaults(func=cmd_mappings)

    # History command
    history_parser = subparsers.add_parser('history', help='Show sync run history')
    history_parser.add_argument('--type', choices=['agency', 'full'], help='Filter by run type')
    history_parser.add_argument('--limit', type=int, default=10, help='Number of records to show')
    history_parser.set_defaults(func=cmd_history)

    # Daemon command
    daemon_parser = subparsers.add_parser('daemon', help='Run as continuous daemon')
    daemon_parser.add_argument('--interval', type=int, default=300, help='Check interval in seconds')
    daemon_parser.set_defaults(func=cmd_run_daemon)

    return parser


def main():
    """Main entry point for the CLI."""
    parser = build_parser()
    args = parser.parse_args()

    if args.command is None:
        parser.print_help()
        sys.exit(0)

    setup_logging(get_config())

    # Run the async command
    asyncio.run(args.func(args))


if __name__ == '__main__':
    main()
