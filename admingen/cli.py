# File: admingen/cli.py
"""
AdminGen - Command-Line Interface
==================================

Operator commands built on the standard-library ``argparse`` module.

Usage examples::

    # Load and validate every definition
    admingen check -m config/admingen

    # Show pending DDL without touching the database
    admingen plan --database-url postgresql://localhost/app

    # Apply additive DDL
    admingen migrate -c admingen.yml -v

    # Renumber positions and create the unique position index
    admingen repair-positions task

    # Print the eager-loading strategy for a presenter render
    admingen includes orders --context index --sort customer.name

Exit codes:
    0 - success
    1 - validation error
    2 - schema error
    4 - input/configuration error
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from typing import Any, Callable, Dict, List, NoReturn, Optional, Sequence

from sqlalchemy.exc import SQLAlchemyError

from admingen.config import AdminGenSettings, load_settings
from admingen.exceptions import ConfigurationError
from admingen.generator import AdminGenerator
from admingen.includes import LoadingStrategy, resolve
from admingen.loader import MetadataSet
from admingen.models import RenderContext
from admingen.schema import MigrationPlan, SchemaManager
from admingen.validators import ValidationResult

# ---------------------------------------------------------------------------
# Logger (configured in _setup_logging)
# ---------------------------------------------------------------------------
logger: logging.Logger = logging.getLogger("admingen")


# ---------------------------------------------------------------------------
# Exit codes
# ---------------------------------------------------------------------------

EXIT_SUCCESS: int = 0
EXIT_VALIDATION_ERROR: int = 1
EXIT_SCHEMA_ERROR: int = 2
EXIT_INPUT_ERROR: int = 4


# ---------------------------------------------------------------------------
# Logging setup
# ---------------------------------------------------------------------------


def _setup_logging(verbosity: int) -> None:
    """
    Configure the root admingen logger based on verbosity level.

    Args:
        verbosity: -1 = silent, 0 = WARNING, 1 = INFO, 2+ = DEBUG.
    """
    if verbosity >= 2:
        level = logging.DEBUG
    elif verbosity >= 1:
        level = logging.INFO
    elif verbosity == 0:
        level = logging.WARNING
    else:
        level = logging.CRITICAL + 1

    handler: logging.StreamHandler = logging.StreamHandler(sys.stderr)
    handler.setLevel(level)

    fmt: str = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
    datefmt: str = "%H:%M:%S"
    handler.setFormatter(logging.Formatter(fmt, datefmt=datefmt))

    root_logger: logging.Logger = logging.getLogger("admingen")
    root_logger.setLevel(level)

    # Remove existing handlers to prevent duplication
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.propagate = False


# ---------------------------------------------------------------------------
# Argument parser
# ---------------------------------------------------------------------------


def _build_parser() -> argparse.ArgumentParser:
    """Build and return the argument parser."""
    from admingen import __version__

    common: argparse.ArgumentParser = argparse.ArgumentParser(add_help=False)
    common.add_argument(
        "-c",
        "--config",
        metavar="FILE",
        help="YAML settings file (default: none, environment and flags only).",
    )
    common.add_argument(
        "-m",
        "--metadata",
        action="append",
        metavar="PATH",
        help="Metadata file or directory. Repeatable; replaces configured paths.",
    )
    common.add_argument("--database-url", metavar="URL", help="SQLAlchemy database URL.")
    common.add_argument(
        "--custom-fields",
        metavar="FILE",
        help="YAML file with custom field definitions.",
    )
    common.add_argument(
        "--strict",
        action="store_true",
        default=None,
        help="Treat validation warnings as errors.",
    )
    verbosity = common.add_mutually_exclusive_group()
    verbosity.add_argument(
        "-v",
        "--verbose",
        action="count",
        default=0,
        help="Increase log output (-v INFO, -vv DEBUG).",
    )
    verbosity.add_argument("-q", "--quiet", action="store_true", help="Silence all logging.")

    parser: argparse.ArgumentParser = argparse.ArgumentParser(
        prog="admingen",
        description=(
            "AdminGen: compile declarative model and presenter definitions into "
            "database schema, runtime types and eager-loading plans."
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=(
            "Examples:\n"
            "  %(prog)s check -m config/admingen\n"
            "  %(prog)s plan --database-url sqlite:///app.db\n"
            "  %(prog)s migrate -c admingen.yml -v\n"
            "  %(prog)s repair-positions task\n"
            "  %(prog)s includes orders --context show\n"
        ),
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")

    commands = parser.add_subparsers(dest="command", metavar="COMMAND")
    commands.required = True

    commands.add_parser("check", parents=[common], help="Load and validate definitions.")
    commands.add_parser("plan", parents=[common], help="Print pending DDL.")
    commands.add_parser("migrate", parents=[common], help="Apply additive DDL.")

    repair = commands.add_parser(
        "repair-positions",
        parents=[common],
        help="Renumber positions and create the unique position index.",
    )
    repair.add_argument("model", help="Name of a positioned model.")

    includes = commands.add_parser(
        "includes",
        parents=[common],
        help="Print the loading strategy of a presenter render.",
    )
    includes.add_argument("presenter", help="Presenter name.")
    includes.add_argument(
        "--context",
        choices=[c.value for c in RenderContext],
        default=RenderContext.INDEX.value,
    )
    includes.add_argument("--sort", metavar="FIELD", help="Runtime sort field.")
    includes.add_argument(
        "--search",
        action="append",
        metavar="FIELD",
        help="Runtime search field. Repeatable.",
    )

    return parser


# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------


def _build_overrides(args: argparse.Namespace) -> Dict[str, Any]:
    """Settings overrides from CLI flags; unset flags are left out."""
    overrides: Dict[str, Any] = {}
    if args.metadata:
        overrides["metadata_paths"] = list(args.metadata)
    if args.database_url is not None:
        overrides["database_url"] = args.database_url
    if args.custom_fields is not None:
        overrides["custom_fields_path"] = args.custom_fields
    if args.strict:
        overrides["strict"] = True
    return overrides


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


def _print_validation(result: ValidationResult) -> None:
    print(result.format_report())


def _load_checked(generator: AdminGenerator) -> Optional[MetadataSet]:
    """Load and validate; None when validation fails."""
    metadata: MetadataSet = generator.load()
    result: ValidationResult = generator.validate(metadata)
    if result.has_errors or (generator.settings.strict and result.has_warnings):
        _print_validation(result)
        return None
    return metadata


def _run_check(generator: AdminGenerator, args: argparse.Namespace) -> int:
    metadata: MetadataSet = generator.load()
    result: ValidationResult = generator.validate(metadata)
    print(f"\n{'=' * 50}")
    print("  Metadata Validation Report")
    print(f"{'=' * 50}")
    print(f"  Models:     {len(metadata.models)}")
    print(f"  Presenters: {len(metadata.presenters)}")
    print(f"  Valid:      {'Yes' if result.is_valid else 'No'}")
    print()
    _print_validation(result)
    print(f"{'=' * 50}\n")
    failed: bool = result.has_errors or (generator.settings.strict and result.has_warnings)
    return EXIT_VALIDATION_ERROR if failed else EXIT_SUCCESS


def _print_plan(plan: MigrationPlan) -> None:
    if plan.is_empty and not plan.warnings:
        print(f"{plan.model}: up to date")
        return
    print(f"{plan.model} ({plan.table}):")
    for step in plan.steps:
        marker: str = " (optional)" if step.optional else ""
        print(f"  - {step.describe()}{marker}")
        if step.sql:
            print(f"      {step.sql}")
    for warning in plan.warnings:
        print(f"  ! {warning}")


def _run_plan(generator: AdminGenerator, args: argparse.Namespace) -> int:
    metadata: Optional[MetadataSet] = _load_checked(generator)
    if metadata is None:
        return EXIT_VALIDATION_ERROR
    manager: SchemaManager = generator.schema_manager()
    for model in metadata.models.values():
        _print_plan(manager.plan(model))
    return EXIT_SUCCESS


def _run_migrate(generator: AdminGenerator, args: argparse.Namespace) -> int:
    metadata: Optional[MetadataSet] = _load_checked(generator)
    if metadata is None:
        return EXIT_VALIDATION_ERROR
    plans: List[MigrationPlan] = generator.schema_manager().ensure_all(metadata.models.values())
    for plan in plans:
        _print_plan(plan)
    executed: int = sum(len(p.steps) for p in plans)
    print(f"\n{executed} step(s) applied to {len(plans)} model(s).")
    return EXIT_SUCCESS


def _run_repair(generator: AdminGenerator, args: argparse.Namespace) -> int:
    metadata: MetadataSet = generator.load()
    model = metadata.require_model(args.model)
    changed: int = generator.schema_manager().repair_positions(model)
    print(f"{model.name}: {changed} position(s) renumbered; unique position index in place.")
    return EXIT_SUCCESS


def _run_includes(generator: AdminGenerator, args: argparse.Namespace) -> int:
    metadata: MetadataSet = generator.load()
    presenter = metadata.require_presenter(args.presenter)
    model = metadata.require_model(presenter.model)
    strategy: LoadingStrategy = resolve(
        presenter,
        model,
        args.context,
        sort_field=args.sort,
        search_fields=args.search,
        models=metadata.models,
    )
    print(json.dumps(strategy.to_dict(), indent=2, sort_keys=True))
    return EXIT_SUCCESS


_COMMANDS: Dict[str, Callable[[AdminGenerator, argparse.Namespace], int]] = {
    "check": _run_check,
    "plan": _run_plan,
    "migrate": _run_migrate,
    "repair-positions": _run_repair,
    "includes": _run_includes,
}


def run(argv: Optional[Sequence[str]] = None) -> int:
    """
    Parse *argv*, run the command and return its exit code.

    Used by ``main`` and directly by tests.
    """
    parser: argparse.ArgumentParser = _build_parser()
    args: argparse.Namespace = parser.parse_args(argv)

    _setup_logging(-1 if args.quiet else args.verbose)

    try:
        settings: AdminGenSettings = load_settings(args.config, _build_overrides(args))
        generator: AdminGenerator = AdminGenerator(settings)
        logger.info("Command: %s", args.command)
        logger.info("Sources: %s", settings.metadata_paths)
        logger.info("Database: %s", settings.database_url)
        exit_code: int = _COMMANDS[args.command](generator, args)
    except ConfigurationError as exc:
        logger.error("%s", exc)
        print(f"error: {exc}", file=sys.stderr)
        return EXIT_INPUT_ERROR
    except SQLAlchemyError as exc:
        logger.error("Schema operation failed: %s", exc)
        print(f"schema error: {exc}", file=sys.stderr)
        return EXIT_SCHEMA_ERROR

    if exit_code == EXIT_SUCCESS:
        logger.info("%s completed successfully.", args.command)
    else:
        logger.error("%s failed with exit code %d.", args.command, exit_code)
    return exit_code


def main(argv: Optional[Sequence[str]] = None) -> NoReturn:
    """Console script entry point."""
    sys.exit(run(argv))


# ---------------------------------------------------------------------------
# Module-level exports
# ---------------------------------------------------------------------------

__all__: List[str] = [
    "EXIT_INPUT_ERROR",
    "EXIT_SCHEMA_ERROR",
    "EXIT_SUCCESS",
    "EXIT_VALIDATION_ERROR",
    "main",
    "run",
]
