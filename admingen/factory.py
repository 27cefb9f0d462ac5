# File: admingen/factory.py
"""
AdminGen - Model Factory
=========================
Builds one runtime ``Record`` subclass per model definition by running the
applicator stages in order over a freshly created type, then checks
external accessors and freezes the type's schema.

The built types are collected into an immutable ``ModelRegistry`` keyed by
model name.
"""

from __future__ import annotations

import logging
from typing import Dict, Iterable, Iterator, List, Mapping, Optional, Sequence, Tuple, Union

from admingen.applicators import STAGES, BuildContext, UniquenessChecker, check_external_accessors
from admingen.custom_fields import CustomFieldRegistry
from admingen.events import EventBus
from admingen.exceptions import ConfigurationError
from admingen.models import BASE_TYPES, ModelDefinition, TypeDefinition
from admingen.runtime import new_record_type
from admingen.services import ServiceRegistry
from admingen.utils import Timer, to_pascal_case

# ---------------------------------------------------------------------------
# Logger
# ---------------------------------------------------------------------------
logger: logging.Logger = logging.getLogger("admingen.factory")

HostMixins = Mapping[str, Union[type, Sequence[type]]]


class ModelRegistry(Mapping[str, type]):
    """Model name -> runtime type. Read-only once built."""

    def __init__(self, types: Mapping[str, type]) -> None:
        self._types: Dict[str, type] = dict(types)

    def __getitem__(self, name: str) -> type:
        try:
            return self._types[name]
        except KeyError:
            raise KeyError(f"No runtime type for model '{name}'") from None

    def __iter__(self) -> Iterator[str]:
        return iter(self._types)

    def __len__(self) -> int:
        return len(self._types)

    def __repr__(self) -> str:
        return f"<ModelRegistry {sorted(self._types)}>"


class ModelFactory:
    """
    Compiles model definitions into runtime types.

    Args:
        services: Registry used for transforms, validators, defaults...
        types: Registered field types; fields naming an unregistered type fail.
        custom_fields: Extension field definitions, loaded separately.
        event_bus: Receives lifecycle and field-change dispatches.
        host_mixins: Model name -> class(es) the runtime type should inherit
            from, ahead of ``Record``. External fields find their getter
            and setter there.
        models: Every loaded model, for cross-model checks.
        uniqueness_checker: Storage-backed answer to uniqueness validations.
    """

    def __init__(
        self,
        services: ServiceRegistry,
        types: Optional[Mapping[str, TypeDefinition]] = None,
        custom_fields: Optional[CustomFieldRegistry] = None,
        event_bus: Optional[EventBus] = None,
        host_mixins: Optional[HostMixins] = None,
        models: Optional[Mapping[str, ModelDefinition]] = None,
        uniqueness_checker: Optional[UniquenessChecker] = None,
    ) -> None:
        self._types: Optional[Mapping[str, TypeDefinition]] = types
        self._host_mixins: HostMixins = host_mixins or {}
        self._context: BuildContext = BuildContext(
            services=services,
            event_bus=event_bus or EventBus(),
            custom_fields=custom_fields,
            models=dict(models or {}),
            uniqueness_checker=uniqueness_checker,
        )

    @property
    def event_bus(self) -> EventBus:
        return self._context.event_bus

    def _bases(self, model_name: str) -> Tuple[type, ...]:
        mixins: Union[type, Sequence[type], None] = self._host_mixins.get(model_name)
        if mixins is None:
            return ()
        if isinstance(mixins, type):
            return (mixins,)
        return tuple(mixins)

    def _check_types(self, model: ModelDefinition) -> None:
        if self._types is None:
            return
        unknown: List[str] = [
            f"{f.name} ({f.type})"
            for f in model.fields
            if f.type not in BASE_TYPES and f.type not in self._types
        ]
        if unknown:
            raise ConfigurationError(f"Unknown field type(s): {', '.join(unknown)}")

    def build(self, model: ModelDefinition) -> type:
        """
        Run every stage over a new type for *model*.

        Raises:
            ConfigurationError: wrapping the first stage failure, naming the
                model and the stage.
        """
        record_type: type = new_record_type(
            model.name, to_pascal_case(model.name), self._bases(model.name)
        )
        stage_name: str = "types"
        try:
            self._check_types(model)
            for stage_name, stage in STAGES:
                stage(record_type, model, self._context)
            stage_name = "external_accessors_check"
            check_external_accessors(record_type)
        except ConfigurationError as exc:
            raise ConfigurationError(
                f"Failed to build model '{model.name}' ({stage_name}): {exc.message}",
                exc.source or model.name,
            ) from exc
        except (AttributeError, KeyError, TypeError, ValueError) as exc:
            raise ConfigurationError(
                f"Failed to build model '{model.name}' ({stage_name}): {exc}", model.name
            ) from exc

        record_type.__schema__.freeze()
        logger.debug("Built runtime type %s for model %s", record_type.__name__, model.name)
        return record_type

    def build_all(self, models: Iterable[ModelDefinition]) -> ModelRegistry:
        built: Dict[str, type] = {}
        with Timer("build runtime types"):
            for model in models:
                built[model.name] = self.build(model)
        logger.info("Built %d runtime type(s)", len(built))
        return ModelRegistry(built)


__all__: List[str] = ["HostMixins", "ModelFactory", "ModelRegistry"]
