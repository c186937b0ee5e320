"""CLI entry point for bundlewatch: auto-generates a default config and watches it."""

import argparse
import asyncio
import logging
import sys
from pathlib import Path

from bundlewatch import __version__
from bundlewatch.config import create_default_config, load_watch_config
from bundlewatch.errors import ConfigurationError, WatchBackendError
from bundlewatch.models import BundleEvent, EventCode
from bundlewatch.notifier import LoggingNotifier
from bundlewatch.session import watch


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """
    Parse command-line arguments.

    Returns:
        Parsed arguments namespace
    """
    parser = argparse.ArgumentParser(
        prog="bundlewatch",
        description="Rebuild a bundle whenever its sources change.",
        epilog="Examples:\n"
        "  bundlewatch                          # Auto-create bundlewatch.toml and watch\n"
        "  bundlewatch --config app.toml        # Use custom config\n"
        "  bundlewatch --version                # Show version",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    parser.add_argument(
        "-c",
        "--config",
        default="bundlewatch.toml",
        help="Path to config file (default: bundlewatch.toml)",
    )

    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable debug logging",
    )

    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )

    return parser.parse_args(argv)


def format_event(event: BundleEvent) -> str:
    """Render a build event as a single console line."""
    if event.code == EventCode.BUNDLE_END:
        return f"[bundlewatch] built {', '.join(event.output or [])} in {event.duration}ms"
    if event.code == EventCode.ERROR and event.error is not None:
        return f"[bundlewatch] error: {event.error.describe()}"
    return f"[bundlewatch] {event.code.value}"


async def run_watch(config_path: Path) -> None:
    """Watch until cancelled."""
    config = load_watch_config(config_path)
    session = await watch(config, notifier=LoggingNotifier())

    session.on("event", lambda event: print(format_event(event)))
    session.on("change", lambda path, change: print(f"[bundlewatch] {change.event.value}: {path}"))

    try:
        await asyncio.Event().wait()
    finally:
        await session.close()


def main() -> None:
    """
    Main entry point for the bundlewatch CLI.

    Handles:
    - Argument parsing
    - Auto-creation of bundlewatch.toml
    - Running the watch session
    - Error handling and exit codes
    """
    args = parse_args()

    logging.basicConfig(format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    logging.getLogger("bundlewatch").setLevel(logging.DEBUG if args.verbose else logging.INFO)

    config_path = Path(args.config).resolve()

    try:
        if create_default_config(config_path):
            print(f"Created default config at: {config_path}")

        asyncio.run(run_watch(config_path))

    except KeyboardInterrupt:
        sys.exit(130)
    except (ConfigurationError, WatchBackendError) as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(2)
    except (PermissionError, OSError) as e:
        print(f"Error: Failed to create config: {e}", file=sys.stderr)
        sys.exit(1)
    except Exception as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
