"""
Main CLI interface for the E2E harness.

Provides commands to run suites, list the tests a run would execute, and
show the resolved configuration.
"""

import argparse
import asyncio
import json
import sys
from pathlib import Path
from typing import List, Optional

from . import __version__
from .core.config import RunConfiguration
from .core.exceptions import ConfigurationError, HarnessError
from .core.logging_config import setup_logging
from .core.run_context import RunContext
from .execution.runner import SuiteRunner, run_suites
from .reporting.generator import DEFAULT_FORMATS, ReportFormat
from .suite.loader import load_test_cases

EXIT_CONFIGURATION_ERROR = 2


def build_config(args: argparse.Namespace) -> RunConfiguration:
    """Resolve configuration from the environment, then apply command-line flags."""
    config = RunConfiguration.from_env()

    projects = getattr(args, "project", None)
    return config.with_overrides(
        base_url=getattr(args, "base_url", None),
        workers=getattr(args, "workers", None),
        retries=getattr(args, "retries", None),
        browser_projects=frozenset(p.strip().lower() for p in projects) if projects else None,
        headless=False if getattr(args, "headed", False) else None,
        reports_dir=getattr(args, "reports_dir", None),
    )


def _suite_paths(args: argparse.Namespace, config: RunConfiguration) -> List[str]:
    return args.paths or [str(config.suites_dir)]


def cmd_run(args: argparse.Namespace) -> int:
    """Run suites command."""
    try:
        config = build_config(args)
        run_context = RunContext()
        setup_logging(config, run_context.run_id)

        test_cases = load_test_cases(_suite_paths(args, config))
        formats = list(DEFAULT_FORMATS)
        if args.markdown:
            formats.append(ReportFormat.MARKDOWN)

        print(f"🚀 Running suites against {config.base_url} (run {run_context.run_id})")
        exit_code = asyncio.run(
            run_suites(config, test_cases, run_context.run_id, grep=args.grep, formats=formats)
        )
        print(f"⏱️  Run {run_context.run_id} finished in {run_context.duration:.1f}s")
        return exit_code

    except ConfigurationError as e:
        print(f"❌ Configuration error: {e.message}", file=sys.stderr)
        return EXIT_CONFIGURATION_ERROR
    except HarnessError as e:
        print(f"❌ {type(e).__name__}: {e.message}", file=sys.stderr)
        if args.verbose:
            import traceback
            traceback.print_exc()
        return 1


def cmd_list(args: argparse.Namespace) -> int:
    """List the tests a run would execute, without starting a browser."""
    try:
        config = build_config(args)
        test_cases = load_test_cases(_suite_paths(args, config))
        runner = SuiteRunner(config, retry_policy=None, reporter=None, grep=args.grep)
        jobs = runner.plan(test_cases)
    except ConfigurationError as e:
        print(f"❌ Configuration error: {e.message}", file=sys.stderr)
        return EXIT_CONFIGURATION_ERROR

    for test_case, project in jobs:
        marker = " (skipped)" if test_case.skip else ""
        print(f"  [{project}] › {test_case.id} › {test_case.full_title}{marker}")
    print(f"Total: {len(jobs)} tests in {len({t.id for t, _ in jobs})} test cases")
    return 0


def cmd_config(args: argparse.Namespace) -> int:
    """Show the resolved configuration."""
    try:
        config = build_config(args)
    except ConfigurationError as e:
        print(f"❌ Configuration error: {e.message}", file=sys.stderr)
        return EXIT_CONFIGURATION_ERROR

    if args.json:
        print(json.dumps(config.to_dict(), indent=2))
        return 0

    print("⚙️  Resolved configuration:")
    for key, value in config.to_dict().items():
        print(f"  {key}: {value}")
    return 0


def cmd_version(args: argparse.Namespace) -> int:
    """Show version information."""
    print(f"e2e-harness {__version__}")
    return 0


def _add_selection_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "paths",
        nargs="*",
        help="Suite files or directories (default: e2e/)",
    )
    parser.add_argument(
        "--grep", "-g",
        help="Only run tests whose title or id matches this regular expression",
    )
    parser.add_argument(
        "--project",
        action="append",
        help="Browser project to run (repeatable): chromium, firefox, webkit",
    )


def create_main_parser() -> argparse.ArgumentParser:
    """Create main CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="e2e-harness",
        description="Browser end-to-end test harness",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  e2e-harness run
  e2e-harness run e2e/app_flow.yaml --grep "Theme" --project firefox
  e2e-harness list
  e2e-harness config --json
        """,
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable verbose output",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # Run command
    run_parser = subparsers.add_parser("run", help="Run test suites")
    _add_selection_arguments(run_parser)
    run_parser.add_argument("--base-url", help="Override the application base URL")
    run_parser.add_argument("--workers", type=int, help="Number of concurrent workers")
    run_parser.add_argument("--retries", type=int, help="Retries for failed tests")
    run_parser.add_argument("--headed", action="store_true", help="Show the browser")
    run_parser.add_argument("--reports-dir", type=Path, help="Directory for report files")
    run_parser.add_argument(
        "--markdown",
        action="store_true",
        help="Also write a Markdown report",
    )
    run_parser.set_defaults(func=cmd_run)

    # List command
    list_parser = subparsers.add_parser("list", help="List tests without running them")
    _add_selection_arguments(list_parser)
    list_parser.set_defaults(func=cmd_list)

    # Config command
    config_parser = subparsers.add_parser("config", help="Show resolved configuration")
    config_parser.add_argument("--json", action="store_true", help="Print as JSON")
    config_parser.set_defaults(func=cmd_config)

    # Version command
    version_parser = subparsers.add_parser("version", help="Show version information")
    version_parser.set_defaults(func=cmd_version)

    return parser


def main(args: Optional[List[str]] = None) -> int:
    """Main CLI entry point."""
    parser = create_main_parser()

    if args is None:
        args = sys.argv[1:]

    parsed_args = parser.parse_args(args)

    if not hasattr(parsed_args, "func"):
        parser.print_help()
        return 1

    return parsed_args.func(parsed_args)


if __name__ == "__main__":
    sys.exit(main())
