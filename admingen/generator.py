# File: admingen/generator.py
"""
AdminGen - Boot Pipeline (Orchestrator)
========================================

Connects every phase together::

    Metadata sources -> Load -> Validate -> Migrate -> Build runtime types

The ``AdminGenerator`` class provides both a programmatic API and the
backend for the CLI.

Workflow::

    1. Load model/presenter/type definitions (loader.py).
    2. Run the metadata checks (validators.py).
    3. Apply additive DDL for every model (schema.py).
    4. Load custom field definitions, when configured (custom_fields.py).
    5. Compile one runtime type per model (factory.py).
    6. Freeze the service, type and event registries.
    7. Return a ``BootReport`` with per-step metrics and a
       ``BootedApplication`` holding the immutable results.

Error handling strategy:
    - Any ``ConfigurationError`` aborts boot. The process must never serve
      traffic against a partially built model set.
    - Validation errors abort boot; validation warnings abort it only in
      strict mode.
    - Skipped schema optimizations are collected as warnings on the report.
    - ``AdminGenerator.report`` holds the report of the last boot, whether
      it succeeded or not.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Tuple, Union

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine

from admingen.config import AdminGenSettings
from admingen.custom_fields import CustomFieldRegistry
from admingen.events import EventBus
from admingen.exceptions import ConfigurationError
from admingen.factory import HostMixins, ModelFactory, ModelRegistry
from admingen.includes import LoadingStrategy, resolve
from admingen.loader import MetadataLoader, MetadataSet
from admingen.models import RenderContext
from admingen.schema import MigrationPlan, SchemaManager, TableUniquenessChecker
from admingen.services import ServiceRegistry, TypeRegistry
from admingen.utils import Timer
from admingen.validators import ValidationResult, validate_metadata

# ---------------------------------------------------------------------------
# Logger
# ---------------------------------------------------------------------------
logger: logging.Logger = logging.getLogger("admingen.generator")


# ---------------------------------------------------------------------------
# Boot report
# ---------------------------------------------------------------------------


@dataclass(frozen=False, slots=True)
class BootStepMetric:
    """Timing and outcome for a single pipeline step."""

    step_name: str = ""
    success: bool = True
    elapsed_seconds: float = 0.0
    detail: str = ""


@dataclass(frozen=False, slots=True)
class BootReport:
    """
    Report produced by ``AdminGenerator.boot()``.

    Contains timing information, definition counts, validation results and
    schema warnings.
    """

    success: bool = False
    database_url: str = ""

    # Metrics
    total_models: int = 0
    total_presenters: int = 0
    total_ddl_steps: int = 0
    total_elapsed_seconds: float = 0.0

    # Sub-reports
    step_metrics: List[BootStepMetric] = field(default_factory=list)
    validation_errors: List[str] = field(default_factory=list)
    validation_warnings: List[str] = field(default_factory=list)
    schema_warnings: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    plans: List[MigrationPlan] = field(default_factory=list)

    @property
    def warnings(self) -> List[str]:
        return self.validation_warnings + self.schema_warnings

    def summary(self) -> str:
        """Return a human-readable summary string."""
        lines: List[str] = []
        status: str = "SUCCESS" if self.success else "FAILED"
        lines.append(f"{'=' * 60}")
        lines.append("  AdminGen - Boot Report")
        lines.append(f"{'=' * 60}")
        lines.append(f"  Status:           {status}")
        lines.append(f"  Database:         {self.database_url}")
        lines.append(f"  Models:           {self.total_models}")
        lines.append(f"  Presenters:       {self.total_presenters}")
        lines.append(f"  DDL steps:        {self.total_ddl_steps}")
        lines.append(f"  Total time:       {self.total_elapsed_seconds:.3f}s")
        lines.append(f"{'-' * 60}")

        if self.step_metrics:
            lines.append("  Pipeline Steps:")
            for step in self.step_metrics:
                icon: str = "ok" if step.success else "!!"
                lines.append(
                    f"    {icon} {step.step_name:<26s} "
                    f"{step.elapsed_seconds:>7.3f}s  "
                    f"{step.detail}"
                )

        sections: Tuple[Tuple[str, List[str], str], ...] = (
            ("Errors", self.errors, "x"),
            ("Validation Errors", self.validation_errors, "x"),
            ("Validation Warnings", self.validation_warnings, "!"),
            ("Schema Warnings", self.schema_warnings, "!"),
        )
        for title, items, mark in sections:
            if not items:
                continue
            lines.append(f"{'-' * 60}")
            lines.append(f"  {title} ({len(items)}):")
            for item in items:
                lines.append(f"    {mark} {item}")

        lines.append(f"{'=' * 60}")
        return "\n".join(lines)


# ---------------------------------------------------------------------------
# Boot result
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class BootedApplication:
    """Everything the request layer needs after boot. Read-only."""

    settings: AdminGenSettings
    metadata: MetadataSet
    models: ModelRegistry
    services: ServiceRegistry
    event_bus: EventBus
    engine: Engine
    custom_fields: Optional[CustomFieldRegistry] = None

    def model(self, name: str) -> type:
        return self.models[name]

    def loading_strategy(
        self,
        presenter_name: str,
        context: Union[str, RenderContext],
        sort_field: Optional[str] = None,
        search_fields: Optional[Sequence[str]] = None,
    ) -> LoadingStrategy:
        """Plan the eager-loading strategy for one presenter render."""
        presenter = self.metadata.require_presenter(presenter_name)
        model = self.metadata.require_model(presenter.model)
        return resolve(
            presenter,
            model,
            context,
            sort_field=sort_field,
            search_fields=search_fields,
            models=self.metadata.models,
        )


# ---------------------------------------------------------------------------
# Orchestrator
# ---------------------------------------------------------------------------


class AdminGenerator:
    """
    Boot pipeline orchestrator.

    Usage::

        generator = AdminGenerator(load_settings("admingen.yml"))
        app, report = generator.boot()
        print(report.summary())
        Order = app.model("order")

    Args:
        settings: Resolved settings.
        services: Service registry; built-ins only when omitted. Frozen at
            the end of a successful boot.
        event_bus: Event subscriptions; frozen at the end of a successful boot.
        host_mixins: Model name -> host class(es) the runtime type inherits.
        engine: SQLAlchemy engine; created from ``settings.database_url``
            when omitted.
    """

    def __init__(
        self,
        settings: AdminGenSettings,
        services: Optional[ServiceRegistry] = None,
        event_bus: Optional[EventBus] = None,
        host_mixins: Optional[HostMixins] = None,
        engine: Optional[Engine] = None,
    ) -> None:
        self.settings: AdminGenSettings = settings
        self.services: ServiceRegistry = services or ServiceRegistry.with_builtins()
        self.event_bus: EventBus = event_bus or EventBus()
        self.host_mixins: HostMixins = host_mixins or {}
        self._engine: Optional[Engine] = engine
        self.report: Optional[BootReport] = None

        logger.debug(
            "AdminGenerator initialised: sources=%s, database=%s, strict=%s.",
            settings.metadata_paths,
            settings.database_url,
            settings.strict,
        )

    @property
    def engine(self) -> Engine:
        if self._engine is None:
            self._engine = create_engine(self.settings.database_url)
        return self._engine

    def schema_manager(self) -> SchemaManager:
        return SchemaManager(self.engine, self.settings.enforce_position_uniqueness)

    # -----------------------------------------------------------------
    # Public: individual phases (also used by the CLI)
    # -----------------------------------------------------------------

    def load(self) -> MetadataSet:
        return MetadataLoader(TypeRegistry()).load(self.settings.metadata_sources)

    def validate(self, metadata: MetadataSet) -> ValidationResult:
        return validate_metadata(metadata, self.services)

    # -----------------------------------------------------------------
    # Public: full boot
    # -----------------------------------------------------------------

    def boot(self, migrate: bool = True) -> Tuple[BootedApplication, BootReport]:
        """
        Run load -> validate -> migrate -> build.

        Args:
            migrate: Apply DDL. When False the database is left untouched
                (the schema is assumed current).

        Raises:
            ConfigurationError: on any load, validation or build failure.
        """
        report: BootReport = BootReport(database_url=self.settings.database_url)
        self.report = report
        pipeline_start: float = time.perf_counter()
        try:
            app: BootedApplication = self._run_pipeline(report, migrate)
        except ConfigurationError as exc:
            report.errors.append(str(exc))
            self._finalise_report(report, time.perf_counter() - pipeline_start)
            logger.error("Boot aborted: %s", exc)
            raise
        self._finalise_report(report, time.perf_counter() - pipeline_start)
        logger.info("Boot complete in %.3fs.", report.total_elapsed_seconds)
        return app, report

    # -----------------------------------------------------------------
    # Internal: master pipeline
    # -----------------------------------------------------------------

    def _run_pipeline(self, report: BootReport, migrate: bool) -> BootedApplication:
        metadata: MetadataSet = self._step_load(report)
        self._step_validate(metadata, report)
        if migrate:
            self._step_migrate(metadata, report)
        custom_fields: Optional[CustomFieldRegistry] = self._step_custom_fields(report)
        models: ModelRegistry = self._step_build(metadata, custom_fields, report)

        self.services.freeze()
        metadata.types.freeze()
        self.event_bus.freeze()

        return BootedApplication(
            settings=self.settings,
            metadata=metadata,
            models=models,
            services=self.services,
            event_bus=self.event_bus,
            engine=self.engine,
            custom_fields=custom_fields,
        )

    def _record(
        self, report: BootReport, name: str, timer: Timer, success: bool, detail: str
    ) -> None:
        report.step_metrics.append(
            BootStepMetric(
                step_name=name,
                success=success,
                elapsed_seconds=timer.elapsed,
                detail=detail,
            )
        )

    # -----------------------------------------------------------------
    # Pipeline step: Load
    # -----------------------------------------------------------------

    def _step_load(self, report: BootReport) -> MetadataSet:
        failure: Optional[ConfigurationError] = None
        with Timer("load_metadata") as t:
            try:
                metadata: MetadataSet = self.load()
            except ConfigurationError as exc:
                failure = exc
        if failure is not None:
            self._record(report, "Load Metadata", t, False, str(failure))
            raise failure

        report.total_models = len(metadata.models)
        report.total_presenters = len(metadata.presenters)
        self._record(
            report,
            "Load Metadata",
            t,
            True,
            f"{len(metadata.models)} models, {len(metadata.presenters)} presenters",
        )
        return metadata

    # -----------------------------------------------------------------
    # Pipeline step: Validation
    # -----------------------------------------------------------------

    def _step_validate(self, metadata: MetadataSet, report: BootReport) -> None:
        """Abort on errors, or on warnings in strict mode."""
        with Timer("validation") as t:
            result: ValidationResult = self.validate(metadata)

        report.validation_errors.extend(str(e) for e in result.errors)
        report.validation_warnings.extend(str(w) for w in result.warnings)

        if result.has_errors:
            detail: str = f"{result.error_count} error(s)"
        elif result.has_warnings:
            detail = f"{result.warning_count} warning(s)"
        else:
            detail = "all checks passed"

        failed: bool = result.has_errors or (self.settings.strict and result.has_warnings)
        self._record(report, "Validate Metadata", t, not failed, detail)

        for warn in result.warnings:
            logger.warning("  ! %s", warn)
        if result.has_errors:
            for err in result.errors:
                logger.error("  x %s", err)
            raise ConfigurationError(f"Metadata validation failed: {result.summary()}")
        if failed:
            raise ConfigurationError(
                f"Metadata validation produced warnings in strict mode: {result.summary()}"
            )

    # -----------------------------------------------------------------
    # Pipeline step: Migrate
    # -----------------------------------------------------------------

    def _step_migrate(self, metadata: MetadataSet, report: BootReport) -> None:
        with Timer("migrate") as t:
            plans: List[MigrationPlan] = self.schema_manager().ensure_all(
                metadata.models.values()
            )

        report.plans.extend(plans)
        report.total_ddl_steps = sum(len(p.steps) for p in plans)
        for plan in plans:
            report.schema_warnings.extend(str(w) for w in plan.warnings)
        self._record(
            report,
            "Migrate Schema",
            t,
            True,
            f"{report.total_ddl_steps} step(s), {len(report.schema_warnings)} warning(s)",
        )

    # -----------------------------------------------------------------
    # Pipeline step: Custom fields
    # -----------------------------------------------------------------

    def _step_custom_fields(self, report: BootReport) -> Optional[CustomFieldRegistry]:
        path: Optional[str] = self.settings.custom_fields_path
        if not path:
            return None
        with Timer("custom_fields") as t:
            registry: CustomFieldRegistry = CustomFieldRegistry.load(path)
        self._record(report, "Load Custom Fields", t, True, f"{len(registry)} definition(s)")
        return registry

    # -----------------------------------------------------------------
    # Pipeline step: Build
    # -----------------------------------------------------------------

    def _step_build(
        self,
        metadata: MetadataSet,
        custom_fields: Optional[CustomFieldRegistry],
        report: BootReport,
    ) -> ModelRegistry:
        factory: ModelFactory = ModelFactory(
            self.services,
            types=metadata.types,
            custom_fields=custom_fields,
            event_bus=self.event_bus,
            host_mixins=self.host_mixins,
            models=metadata.models,
            uniqueness_checker=TableUniquenessChecker(self.engine, metadata.models),
        )
        with Timer("build") as t:
            registry: ModelRegistry = factory.build_all(metadata.models.values())
        self._record(report, "Build Runtime Types", t, True, f"{len(registry)} type(s)")
        return registry

    # -----------------------------------------------------------------
    # Internal: finalise report
    # -----------------------------------------------------------------

    def _finalise_report(self, report: BootReport, total_elapsed: float) -> BootReport:
        report.total_elapsed_seconds = total_elapsed
        report.success = not report.errors and not report.validation_errors
        return report


# ---------------------------------------------------------------------------
# Module-level exports
# ---------------------------------------------------------------------------

__all__: List[str] = [
    "AdminGenerator",
    "BootReport",
    "BootStepMetric",
    "BootedApplication",
]
