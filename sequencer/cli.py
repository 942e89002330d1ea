"""Command-line interface for listing, playing and checking scenarios."""

import argparse
import asyncio
import signal
import sys
from pathlib import Path
from typing import List, Optional

from .config_loader import load_config
from .config_models import SystemConfig
from .interfaces import NativeActionService, SequencerError
from .ipc.process import HelperProcess
from .logging_config import setup_logging
from .scenario.manager import ScenarioManager
from .scenario.player import CancellationToken, ExecutionProgress, ExecutionStatus
from .simulation import SimulatedNativeService


def create_parser() -> argparse.ArgumentParser:
    """Create the command-line argument parser."""
    parser = argparse.ArgumentParser(
        prog="sequencer",
        description="Record-and-replay desktop UI automation",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # List scenarios, most recently used first
  sequencer list

  # Play a scenario by name or id
  sequencer play "Login"

  # Walk through a scenario without touching the desktop
  sequencer play "Login" --dry-run

  # Check the helper's macOS permissions
  sequencer permissions
        """
    )

    parser.add_argument(
        '--config',
        type=Path,
        help='Path to configuration file (default: config/config.yml)'
    )

    parser.add_argument(
        '--quiet',
        action='store_true',
        help='Suppress progress output'
    )

    subparsers = parser.add_subparsers(dest='command', required=True)

    subparsers.add_parser('list', help='List scenarios')

    play_parser = subparsers.add_parser('play', help='Play a scenario')
    play_parser.add_argument(
        'scenario',
        help='Scenario id or name'
    )
    play_parser.add_argument(
        '--dry-run',
        action='store_true',
        help='Simulate the native helper instead of launching it'
    )

    subparsers.add_parser('permissions', help='Check accessibility and screen recording permissions')

    return parser


def format_duration(duration: Optional[float]) -> str:
    """Format duration in a human-readable way."""
    if duration is None:
        return "N/A"

    if duration < 60:
        return f"{duration:.1f}s"
    minutes = duration // 60
    seconds = duration % 60
    return f"{int(minutes)}m{seconds:.0f}s"


def format_progress(progress: ExecutionProgress) -> str:
    line = f"[{progress.current_step}/{progress.total_steps}] {progress.status.value}"
    if progress.step_description:
        line += f": {progress.step_description}"
    if progress.error:
        line += f": {progress.error}"
    return line


def list_scenarios(manager: ScenarioManager) -> None:
    """Print the scenario table."""
    scenarios = manager.list_scenarios()
    if not scenarios:
        print("No scenarios found.")
        return

    print(f"{'Name':<30} {'Steps':<8} {'Id':<38}")
    print("-" * 76)
    for summary in scenarios:
        print(f"{summary['name'][:30]:<30} {summary['flattened_steps']:<8} {summary['id']:<38}")


def _require_helper(config: SystemConfig) -> HelperProcess:
    if config.helper.path is None:
        raise SequencerError("No helper path configured (set helper.path or SEQUENCER_HELPER_PATH)")
    return HelperProcess(config.helper.path, config.helper.request_timeout_ms)


async def play_scenario(config: SystemConfig, scenario: str, dry_run: bool = False,
                        quiet: bool = False) -> int:
    """
    Play a scenario, cancelling it on Ctrl-C.

    Returns:
        Process exit code
    """
    token = CancellationToken()
    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, token.cancel)
    except (NotImplementedError, RuntimeError):
        pass

    def report(progress: ExecutionProgress) -> None:
        if not quiet:
            print(format_progress(progress))

    async def run(service: NativeActionService) -> int:
        manager = ScenarioManager(config, service)
        manager.load()
        result = await manager.play_scenario(scenario, token, report)

        if not quiet:
            print(f"{result.scenario.name}: {result.status.value} in {format_duration(result.duration)}")
        if result.status == ExecutionStatus.ABORTED:
            return 130
        return 0 if result.success else 1

    try:
        if dry_run:
            return await run(SimulatedNativeService())

        async with _require_helper(config) as service:
            return await run(service)
    finally:
        try:
            loop.remove_signal_handler(signal.SIGINT)
        except (NotImplementedError, RuntimeError):
            pass


async def check_permissions(config: SystemConfig) -> int:
    """Print the helper's permission status."""
    async with _require_helper(config) as service:
        status = await service.check_permissions()

    print(f"Accessibility:    {'granted' if status.accessibility else 'missing'}")
    print(f"Screen recording: {'granted' if status.screen_recording else 'missing'}")
    return 0 if status.all_granted else 1


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point for the CLI."""
    parser = create_parser()
    args = parser.parse_args(argv)

    try:
        config = load_config(args.config)
        setup_logging(config)

        if args.command == 'list':
            manager = ScenarioManager(config, SimulatedNativeService())
            manager.load()
            list_scenarios(manager)
            return 0

        if args.command == 'play':
            return asyncio.run(play_scenario(config, args.scenario, args.dry_run, args.quiet))

        if args.command == 'permissions':
            return asyncio.run(check_permissions(config))

    except KeyboardInterrupt:
        if not args.quiet:
            print("\nOperation cancelled by user")
        return 130

    except (SequencerError, KeyError, OSError) as e:
        message = e.args[0] if isinstance(e, KeyError) and e.args else e
        print(f"Error: {message}", file=sys.stderr)
        return 1

    return 0


if __name__ == '__main__':
    sys.exit(main())
