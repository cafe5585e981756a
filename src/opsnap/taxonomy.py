"""Taxonomy provider interface.

The baseline ATT&CK-style taxonomy (tactics, techniques, sub-techniques)
comes from outside the engine.  Providers hand back plain dicts in
snapshot wire format; callers validate them like any other payload.

Usage:
    from opsnap.taxonomy import JsonTaxonomyProvider

    provider = JsonTaxonomyProvider("taxonomy.json")
    provider.tactics()   # [{"id": "TA0001", "name": "Initial Access", ...}]
"""

import json
from pathlib import Path
from typing import Any, Protocol


class TaxonomyProvider(Protocol):
    """Read-only source of baseline taxonomy rows."""

    def metadata(self) -> dict[str, str]:
        """Name and version of the taxonomy release."""
        ...

    def tactics(self) -> list[dict[str, Any]]:
        ...

    def techniques(self) -> list[dict[str, Any]]:
        ...

    def sub_techniques(self) -> list[dict[str, Any]]:
        ...


class JsonTaxonomyProvider:
    """Taxonomy loaded from a JSON file.

    Expected layout::

        {
          "name": "enterprise-attack",
          "version": "15.1",
          "tactics": [{"id", "name", "description", "url"}],
          "techniques": [{"id", "name", "description", "url", "tacticId"}],
          "subTechniques": [{"id", "name", "description", "url", "techniqueId"}]
        }
    """

    def __init__(self, path: str | Path) -> None:
        self._path = Path(path)
        self._data: dict[str, Any] | None = None

    def _load(self) -> dict[str, Any]:
        if self._data is None:
            with open(self._path, encoding="utf-8") as f:
                self._data = json.load(f)
        return self._data

    def metadata(self) -> dict[str, str]:
        data = self._load()
        return {"name": data.get("name", self._path.stem), "version": str(data.get("version", ""))}

    def tactics(self) -> list[dict[str, Any]]:
        return list(self._load().get("tactics", []))

    def techniques(self) -> list[dict[str, Any]]:
        return list(self._load().get("techniques", []))

    def sub_techniques(self) -> list[dict[str, Any]]:
        return list(self._load().get("subTechniques", []))
