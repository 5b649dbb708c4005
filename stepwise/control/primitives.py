"""Motion primitive registry.

Every primitive class implements the same ``configure/start/poll/abort``
contract (see :mod:`stepwise.control.motion_primitives`). This module
re-exports them and provides :class:`PrimitiveLibrary`, which builds a
configured primitive from a record by its ``type`` name.
"""

from __future__ import annotations

import logging
from typing import Any

from pydantic import BaseModel

from stepwise.control.chassis_primitives import ChassisMotion, ChassisTargetMotion  # noqa: F401
from stepwise.control.context import MotionContext
from stepwise.control.motion_primitives import (  # noqa: F401
    EndEffectorMotion,
    JointMotion,
    MotionPrimitive,
    SpaceSearchMotion,
    TwoStageMotion,
)
from stepwise.control.publish_primitives import (  # noqa: F401
    ExtendMotion,
    GimbalMotion,
    GpioMotion,
    HandMotion,
    JointPointMotion,
    JointPositionMotion,
    LabelMotion,
    ReversalMotion,
)
from stepwise.errors import ConfigError

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Primitive library: registry and factory
# ---------------------------------------------------------------------------

PrimitiveClass = type[MotionPrimitive]


class PrimitiveLibrary:
    """Registry of primitive classes keyed by configuration ``type``."""

    def __init__(self) -> None:
        self._primitives: dict[str, PrimitiveClass] = {}
        self._register_defaults()

    def _register_defaults(self) -> None:
        """Register all built-in primitives."""
        for cls in (
            EndEffectorMotion,
            SpaceSearchMotion,
            JointMotion,
            TwoStageMotion,
            ChassisMotion,
            ChassisTargetMotion,
            HandMotion,
            GpioMotion,
            LabelMotion,
            JointPositionMotion,
            JointPointMotion,
            ExtendMotion,
            GimbalMotion,
            ReversalMotion,
        ):
            self.register(cls.type_name, cls)

    def register(self, name: str, cls: PrimitiveClass) -> None:
        """Register a primitive class by type name.

        Args:
            name: Configuration ``type`` value (e.g. "joint").
            cls: MotionPrimitive subclass implementing it.
        """
        self._primitives[name] = cls
        logger.debug("Registered primitive: %s", name)

    def build(
        self,
        record: dict[str, Any] | BaseModel,
        context: MotionContext,
        name: str | None = None,
    ) -> MotionPrimitive:
        """Construct and configure a primitive from a record.

        Args:
            record: Motion configuration record with a ``type`` field.
            context: Backends and shared state for the primitive.
            name: Label for logs; defaults to the type name.

        Returns:
            A configured, idle primitive.

        Raises:
            ConfigError: If the type is not registered or the record is invalid.
        """
        type_name = record.get("type") if isinstance(record, dict) else getattr(record, "type", None)
        cls = self._primitives.get(str(type_name))
        if cls is None:
            raise ConfigError(f"Unknown primitive type: {type_name}")
        primitive = cls(context, record, name=name or str(type_name))
        logger.debug("Built primitive '%s' (%s)", primitive.name, cls.__name__)
        return primitive

    @property
    def available(self) -> list[str]:
        """List registered primitive type names."""
        return list(self._primitives.keys())
