#!/usr/bin/env python3
"""
Offline Workspace Sync - Main Entry Point

Queues local edits of files in a GitHub repository while offline and
reconciles them with the remote branch when connectivity returns.

Usage:
    python -m src.main                                  # Sync pending changes
    python -m src.main --status                         # Show queue and last sync
    python -m src.main --enqueue docs/a.md --action update --file a.md
    python -m src.main --discard docs/a.md --yes        # Drop a pending change

Environment Variables Required:
    GITHUB_TOKEN    - Token with contents write access
    GITHUB_OWNER    - Repository owner
    GITHUB_REPO     - Repository name

Exit codes: 0 idle, 1 error, 2 conflicts, 3 offline, 130 interrupted.
"""

import argparse
import logging
import sys
from pathlib import Path

# Add project root to path for imports if running as script
if __name__ == "__main__" and __package__ is None:
    PROJECT_ROOT = Path(__file__).parent.parent
    sys.path.insert(0, str(PROJECT_ROOT))

from config.settings import ConfigurationError, Settings, load_settings
from src.github.client import GitHubGateway
from src.storage.models import ChangeAction
from src.storage.queue_store import PersistenceError, QueueStore
from src.sync.engine import SyncCoordinator
from src.sync.errors import SyncError
from src.sync.state import SyncStatus

EXIT_OK = 0
EXIT_ERROR = 1
EXIT_CONFLICT = 2
EXIT_OFFLINE = 3
EXIT_INTERRUPTED = 130


def setup_logging(verbose: bool = False) -> None:
    """
    Configure logging for the application.

    Args:
        verbose: If True, enable DEBUG level logging
    """
    level = logging.DEBUG if verbose else logging.INFO

    logging.basicConfig(
        level=level,
        format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        handlers=[
            logging.StreamHandler(sys.stdout),
        ],
    )

    # Reduce noise from external libraries
    logging.getLogger("urllib3").setLevel(logging.WARNING)
    logging.getLogger("requests").setLevel(logging.WARNING)


def parse_args(argv=None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description="Sync offline edits of a GitHub repository workspace",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    python -m src.main                                   # Sync pending changes
    python -m src.main --status                          # Show pending changes
    python -m src.main --enqueue a.md --action create --file ./a.md
    python -m src.main --enqueue a.md --action delete
    python -m src.main --discard a.md --yes
    python -m src.main --env .env.local                  # Use custom env file
        """,
    )

    mode = parser.add_mutually_exclusive_group()

    mode.add_argument(
        "--status",
        action="store_true",
        help="Show pending changes and last sync without syncing",
    )

    mode.add_argument(
        "--enqueue",
        metavar="PATH",
        help="Queue a local change of PATH (workspace-relative)",
    )

    mode.add_argument(
        "--discard",
        metavar="PATH",
        help="Drop the pending change of PATH (requires --yes)",
    )

    parser.add_argument(
        "--action",
        choices=[a.value for a in ChangeAction],
        default=ChangeAction.UPDATE.value,
        help="Kind of change for --enqueue (default: update)",
    )

    parser.add_argument(
        "--file",
        type=Path,
        help="Local file holding the new content for --enqueue",
    )

    parser.add_argument(
        "--yes",
        action="store_true",
        help="Confirm a destructive operation",
    )

    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable verbose/debug logging",
    )

    parser.add_argument(
        "--env",
        type=Path,
        help="Path to .env file (default: .env in current directory)",
    )

    return parser.parse_args(argv)


def show_status(coordinator: SyncCoordinator) -> None:
    """
    Display current sync status.

    Args:
        coordinator: Opened coordinator to query
    """
    logger = logging.getLogger(__name__)
    state = coordinator.state
    last = state.last_synced_at.strftime("%Y-%m-%d %H:%M:%S") if state.last_synced_at else "never"

    logger.info("=" * 50)
    logger.info("Sync Status")
    logger.info("=" * 50)
    logger.info(f"Pending changes: {state.pending_count}")
    logger.info(f"Last synced:     {last}")
    for change in coordinator.queue.entries():
        logger.info(f"  {change.action.value:<7} {change.path}")
    logger.info("=" * 50)


def run_sync(coordinator: SyncCoordinator) -> int:
    """Run one pass and map the resulting state to an exit code."""
    logger = logging.getLogger(__name__)

    logger.info("Starting synchronization...")
    state = coordinator.sync()

    if coordinator.last_stats is not None and state.status is not SyncStatus.OFFLINE:
        logger.info(str(coordinator.last_stats))

    if state.status is SyncStatus.OFFLINE:
        logger.warning(f"Remote unreachable; {state.pending_count} changes stay queued")
        return EXIT_OFFLINE
    if state.status is SyncStatus.ERROR:
        logger.error(f"Sync failed: {state.last_error}")
        logger.error("Pending changes were kept; run again to retry")
        return EXIT_ERROR
    if state.status is SyncStatus.CONFLICT:
        logger.warning("Conflicting remote changes need resolving:")
        for path in state.conflict_paths:
            logger.warning(f"  {path}")
        return EXIT_CONFLICT

    logger.info("Sync completed successfully!")
    return EXIT_OK


def build_coordinator(settings: Settings, store: QueueStore) -> tuple[GitHubGateway, SyncCoordinator]:
    gateway = GitHubGateway(
        owner=settings.github.owner,
        repo=settings.github.repo,
        token=settings.github.token,
        branch=settings.github.branch,
        api_url=settings.github.api_url,
        workspace_path=settings.github.workspace_path,
        max_retries=settings.sync.max_retries,
        connectivity_timeout=settings.sync.connectivity_timeout,
    )
    coordinator = SyncCoordinator(
        gateway=gateway,
        store=store,
        commit_message=settings.sync.commit_message,
    )
    return gateway, coordinator


def main(argv=None) -> int:
    """
    Main entry point.

    Returns:
        Exit code
    """
    args = parse_args(argv)
    setup_logging(verbose=args.verbose)

    logger = logging.getLogger(__name__)

    try:
        settings = load_settings(env_file=args.env)
    except ConfigurationError as e:
        logger.error(f"Configuration error: {e}")
        logger.error("Please check your .env file or environment variables")
        return EXIT_ERROR

    if not args.verbose:
        logging.getLogger().setLevel(getattr(logging, settings.log_level, logging.INFO))

    if args.discard and not args.yes:
        logger.error(f"Discarding the pending change to {args.discard} loses it; pass --yes")
        return EXIT_ERROR

    gateway = None
    coordinator = None

    try:
        store = QueueStore(settings.storage.database_path)
        gateway, coordinator = build_coordinator(settings, store)
        coordinator.open()

        if args.status:
            show_status(coordinator)
            return EXIT_OK

        if args.enqueue:
            action = ChangeAction(args.action)
            payload = None
            if action is not ChangeAction.DELETE:
                if args.file is None:
                    logger.error(f"--action {action.value} requires --file")
                    return EXIT_ERROR
                payload = args.file.read_text(encoding="utf-8")
            change = coordinator.enqueue_change(args.enqueue, action, payload)
            if change is None:
                logger.info(f"{args.enqueue} has no pending change")
            else:
                logger.info(f"Queued {change.action.value} of {change.path}")
            return EXIT_OK

        if args.discard:
            dropped = coordinator.discard_change(args.discard, confirm=True)
            if dropped is None:
                logger.info(f"No pending change for {args.discard}")
            return EXIT_OK

        return run_sync(coordinator)

    except PersistenceError as e:
        logger.error(f"Local storage error: {e}")
        return EXIT_ERROR
    except SyncError as e:
        logger.error(f"Sync error: {e}")
        return EXIT_ERROR
    except OSError as e:
        logger.error(f"Cannot read local file: {e}")
        return EXIT_ERROR
    except KeyboardInterrupt:
        logger.info("Sync interrupted by user")
        return EXIT_INTERRUPTED
    except Exception as e:
        logger.error(f"Unexpected error: {e}", exc_info=True)
        return EXIT_ERROR
    finally:
        if coordinator:
            coordinator.close()
        if gateway:
            gateway.close()


if __name__ == "__main__":
    sys.exit(main())
