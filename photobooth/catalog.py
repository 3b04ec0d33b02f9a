"""Prompt catalog for the photobooth assistant.

Loads the static prompt table from a YAML file (photobooth/prompts/responses.yaml
by default). Each prompt name maps to an ordered list of variants; a variant is
either a speech string or a ``(speech, delay_ms)`` pair.
"""

import os
from types import MappingProxyType
from typing import Dict, List, Mapping, Optional, Tuple, Union

import yaml

from photobooth import PROJECT_ROOT
from photobooth.utils import booth_log

Variant = Union[str, Tuple[str, int]]

DEFAULT_CATALOG_PATH = os.path.join(PROJECT_ROOT, "photobooth", "prompts", "responses.yaml")


class UnknownPromptError(KeyError):
    """Raised when a prompt name (or explicit variant index) is not in the catalog."""


class PromptShapeError(TypeError):
    """Raised when a prompt's variants do not have the shape the caller expects."""


def _parse_variant(name: str, raw) -> Variant:
    if isinstance(raw, str):
        return raw
    if isinstance(raw, dict) and "text" in raw:
        return str(raw["text"]), int(raw.get("delay", 0))
    if isinstance(raw, (list, tuple)) and len(raw) == 2 and isinstance(raw[0], str):
        return raw[0], int(raw[1])
    raise PromptShapeError(f"Prompt '{name}' has an invalid variant: {raw!r}")


class PromptCatalog:
    """Immutable prompt-name -> variants table."""

    def __init__(self, prompts: Mapping[str, List]):
        parsed: Dict[str, Tuple[Variant, ...]] = {}
        for name, raw_variants in prompts.items():
            if not isinstance(raw_variants, (list, tuple)) or not raw_variants:
                raise PromptShapeError(f"Prompt '{name}' must have at least one variant")
            parsed[str(name)] = tuple(_parse_variant(name, raw) for raw in raw_variants)
        self._prompts = MappingProxyType(parsed)

    @classmethod
    def load(cls, path: Optional[str] = None) -> "PromptCatalog":
        """Load the catalog from a YAML file."""
        path = path or DEFAULT_CATALOG_PATH
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
        if not isinstance(data, dict):
            raise PromptShapeError(f"Prompt catalog {path} must be a mapping")
        catalog = cls(data)
        booth_log("CATALOG", f"Loaded {len(catalog)} prompts from {path}")
        return catalog

    def variants(self, name: str) -> Tuple[Variant, ...]:
        try:
            return self._prompts[name]
        except KeyError:
            raise UnknownPromptError(name) from None

    def is_delayed(self, name: str) -> bool:
        """True when the prompt's variants carry a command delay."""
        return all(isinstance(v, tuple) for v in self.variants(name))

    def names(self) -> List[str]:
        return sorted(self._prompts)

    def __contains__(self, name) -> bool:
        return name in self._prompts

    def __len__(self) -> int:
        return len(self._prompts)
