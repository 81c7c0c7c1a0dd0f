"""
Layered SSL/TLS configuration.

Layers are applied in order to one accumulator. Nested mappings merge key by
key, so a layer only replaces the leaves it defines.
"""
import copy
from typing import Any, Iterable, Mapping, Optional


# Options holding a set of flags. A layer may give them as a mapping of
# flag -> bool, a list of flag names or a single name; "!name" clears a flag.
FLAG_SETS = ("options", "verify")


def _flag_set(value: Any) -> Any:
    if isinstance(value, str):
        value = [value]
    if isinstance(value, (list, tuple, set, frozenset)):
        return {name.lstrip("!"): not name.startswith("!") for name in value}
    return value


def _merge(target: dict[str, Any], layer: Mapping[str, Any]) -> None:
    for key, value in layer.items():
        if value is None:
            continue
        if key in FLAG_SETS:
            value = _flag_set(value)
        if isinstance(value, Mapping):
            existing = target.get(key)
            if not isinstance(existing, dict):
                existing = target[key] = {}
            _merge(existing, value)
        else:
            target[key] = copy.copy(value)


class SSLConfig:
    """Accumulates configuration layers; later layers win key by key."""

    def __init__(self):
        self._data: dict[str, Any] = {}

    def apply(self, layer: Optional[Mapping[str, Any]]) -> "SSLConfig":
        """Merge one layer in. None layers are ignored."""
        if layer:
            _merge(self._data, layer)
        return self

    def final(self) -> dict[str, Any]:
        """
        Produce the merged configuration.

        Cipher lists are joined with ":" and each flag set (options, verify)
        becomes the sorted list of enabled flag names.
        """
        final = copy.deepcopy(self._data)

        ciphers = final.get("ciphers")
        if isinstance(ciphers, (list, tuple)):
            final["ciphers"] = ":".join(ciphers)

        for key in FLAG_SETS:
            flags = final.get(key)
            if isinstance(flags, Mapping):
                final[key] = sorted(name for name, enabled in flags.items() if enabled)

        return final


def merge_overrides(config: SSLConfig, overrides: Iterable[Optional[Mapping[str, Any]]]) -> SSLConfig:
    """
    Apply caller override layers so that the FIRST one listed wins.

    Layers are applied in reverse order: the last layer goes on first and the
    first layer is applied last, over everything else.
    """
    for layer in reversed(list(overrides)):
        config.apply(layer)
    return config
