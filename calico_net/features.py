"""Feature gates of the calico networking extension."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from types import MappingProxyType
from typing import Mapping


class PreRelease(str, Enum):
    """Maturity stage of a feature."""

    ALPHA = "ALPHA"
    BETA = "BETA"
    GA = ""
    DEPRECATED = "DEPRECATED"


@dataclass(frozen=True)
class FeatureSpec:
    """Default value and maturity of a feature."""

    default: bool
    pre_release: PreRelease = PreRelease.GA
    lock_to_default: bool = False


ALL_ALPHA = "AllAlpha"
ALL_BETA = "AllBeta"

# Runs the long-lived calico-node container in non-privileged and non-root mode.
NON_PRIVILEGED_CALICO_NODE = "NonPrivilegedCalicoNode"


class FeatureGate:
    """A set of known features and their current values."""

    def __init__(self) -> None:
        self._known: dict[str, FeatureSpec] = {
            ALL_ALPHA: FeatureSpec(False, PreRelease.ALPHA),
            ALL_BETA: FeatureSpec(False, PreRelease.BETA),
        }
        self._enabled: dict[str, bool] = {}

    def add(self, specs: Mapping[str, FeatureSpec]) -> None:
        """Register features; re-registering with the same spec is allowed."""
        for name, spec in specs.items():
            existing = self._known.get(name)
            if existing is not None and existing != spec:
                raise ValueError(f"feature gate {name!r} with different spec already exists: {existing}")
        self._known.update(specs)

    def enabled(self, name: str) -> bool:
        """Return whether the named feature is enabled."""
        if name in self._enabled:
            return self._enabled[name]
        spec = self._known.get(name)
        if spec is None:
            raise KeyError(f"feature {name!r} is not registered in FeatureGate")
        return spec.default

    def set_from_map(self, values: Mapping[str, bool]) -> None:
        """Set feature values; unknown or locked features are rejected."""
        updated = dict(self._enabled)
        for name, value in values.items():
            spec = self._known.get(name)
            if spec is None:
                raise ValueError(f"unrecognized feature gate: {name}")
            if spec.lock_to_default and spec.default != value:
                raise ValueError(
                    f"cannot set feature gate {name} to {value}, feature is locked to {spec.default}"
                )
            updated[name] = bool(value)
        for special, stage in ((ALL_ALPHA, PreRelease.ALPHA), (ALL_BETA, PreRelease.BETA)):
            if special not in values:
                continue
            for name, spec in self._known.items():
                if spec.pre_release is stage and name not in (ALL_ALPHA, ALL_BETA) and name not in values:
                    updated[name] = bool(values[special])
        self._enabled = updated


FEATURE_GATE = FeatureGate()

FEATURE_GATES: Mapping[str, FeatureSpec] = MappingProxyType(
    {NON_PRIVILEGED_CALICO_NODE: FeatureSpec(default=False, pre_release=PreRelease.ALPHA)}
)


def register_feature_gates(gate: FeatureGate | None = None) -> FeatureGate:
    """Register the extension's feature gates in the given or shared gate."""
    target = FEATURE_GATE if gate is None else gate
    target.add(FEATURE_GATES)
    return target