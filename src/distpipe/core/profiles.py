from __future__ import annotations

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Mapping

_ENV_EXCLUDES = (
    "transform-typeof-symbol",
    "transform-async-to-generator",
    "transform-spread",
)


@dataclass(frozen=True)
class EnvironmentProfile:
    """Named compilation policy handed to the transformer.

    ``presets`` and ``plugins`` are ordered; ``targets`` describes the runtime
    the emitted code must run on.
    """

    name: str
    presets: tuple[str, ...]
    plugins: tuple[str, ...]
    targets: Mapping[str, Any] = field(default_factory=lambda: MappingProxyType({}))
    module_format: str = "commonjs"
    loose: bool = True
    env_excludes: tuple[str, ...] = _ENV_EXCLUDES

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "presets": list(self.presets),
            "plugins": list(self.plugins),
            "targets": dict(self.targets),
            "module_format": self.module_format,
            "loose": self.loose,
            "env_excludes": list(self.env_excludes),
        }


CLIENT = EnvironmentProfile(
    name="client",
    presets=("typescript", "env", "react"),
    plugins=(
        "syntax-dynamic-import",
        "proposal-class-properties",
        "proposal-numeric-separator",
        "transform-runtime",
    ),
    targets=MappingProxyType({"esmodules": True, "bugfixes": True}),
)

SERVER = EnvironmentProfile(
    name="server",
    presets=("typescript", "react", "env"),
    plugins=(
        "dynamic-import-node",
        "proposal-class-properties",
        "proposal-numeric-separator",
    ),
    targets=MappingProxyType({"node": "8.3"}),
)

PROFILES: Mapping[str, EnvironmentProfile] = MappingProxyType(
    {CLIENT.name: CLIENT, SERVER.name: SERVER}
)


def get_profile(name: str) -> EnvironmentProfile:
    try:
        return PROFILES[name]
    except KeyError:
        known = ", ".join(sorted(PROFILES))
        raise ValueError(f"Unknown environment profile: {name} (known: {known})") from None
