"""Metric descriptors and the observations produced from them."""
from __future__ import annotations

from dataclasses import dataclass
from typing import FrozenSet, Iterable, Optional, Tuple

from .types import LabelCountError


@dataclass(frozen=True)
class MetricDescriptor:
    """Immutable description of one gauge family."""
    name: str
    help: str
    label_names: Tuple[str, ...] = ()

    def __init__(self, name: str, help: str, *label_names: str):
        if len(set(label_names)) != len(label_names):
            raise ValueError(f"duplicate label names for {name}: {label_names}")
        object.__setattr__(self, "name", name)
        object.__setattr__(self, "help", help)
        object.__setattr__(self, "label_names", tuple(label_names))

    def new_observation(self, value: float, *label_values: str) -> "Observation":
        """Build an observation; the label count must match the descriptor.

        Raises:
            LabelCountError: if ``len(label_values) != len(self.label_names)``.
        """
        if len(label_values) != len(self.label_names):
            raise LabelCountError(
                f"{self.name} expects {len(self.label_names)} label values "
                f"{self.label_names}, got {len(label_values)}: {label_values}"
            )
        return Observation(
            descriptor=self,
            value=float(value),
            label_values=tuple(str(v) for v in label_values),
        )

    def new_failure_observation(self, err: BaseException) -> "Observation":
        """Mark this family as unavailable for the current scrape."""
        return Observation(descriptor=self, value=float("nan"), error=err)


@dataclass(frozen=True)
class Observation:
    descriptor: MetricDescriptor
    value: float
    label_values: Tuple[str, ...] = ()
    error: Optional[BaseException] = None

    @property
    def is_failure(self) -> bool:
        return self.error is not None


def combine_unique(*lists: Iterable[str]) -> FrozenSet[str]:
    """Merge address lists into one set; order and repetition do not matter."""
    combined = set()
    for items in lists:
        combined.update(items)
    return frozenset(combined)
