"""
Endpoint registry: the single source of truth for external call contracts.

Descriptors are read from a JSON data file at start-up and never change
afterwards. Adding an endpoint means editing the data file, not the gateway.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional, Union

from pydantic import ValidationError as PydanticValidationError

from shared.errors import EndpointNotFoundError, RegistryConfigError
from shared.logging import get_logger
from .models import EndpointDescriptor


DEFAULT_DATA_FILE = Path(__file__).resolve().parent / "data" / "endpoints.json"


class EndpointRegistry:
    """Read-only lookup table of endpoint descriptors keyed by id."""

    def __init__(self, descriptors: Iterable[EndpointDescriptor]):
        table: Dict[str, EndpointDescriptor] = {}
        for descriptor in descriptors:
            if descriptor.id in table:
                raise RegistryConfigError(
                    f"Duplicate endpoint id: {descriptor.id}",
                    {"endpoint_id": descriptor.id}
                )
            table[descriptor.id] = descriptor
        self._descriptors = table

    @classmethod
    def from_mapping(cls, payload: Mapping[str, Any]) -> "EndpointRegistry":
        """Build a registry from the decoded data-file payload."""
        entries = payload.get("endpoints")
        if not isinstance(entries, list):
            raise RegistryConfigError("Registry data must contain an 'endpoints' list")

        descriptors: List[EndpointDescriptor] = []
        for index, raw in enumerate(entries):
            try:
                descriptors.append(EndpointDescriptor.model_validate(raw))
            except PydanticValidationError as exc:
                endpoint_id = raw.get("id") if isinstance(raw, dict) else None
                raise RegistryConfigError(
                    f"Invalid endpoint definition at index {index}",
                    {
                        "endpoint_id": endpoint_id,
                        "errors": exc.errors(include_url=False, include_context=False),
                    }
                ) from exc
        return cls(descriptors)

    @classmethod
    def from_file(cls, path: Union[str, Path]) -> "EndpointRegistry":
        """Load a registry from a JSON data file."""
        data_path = Path(path)
        logger = get_logger("gateway.registry")
        try:
            with data_path.open("r", encoding="utf-8") as handle:
                payload = json.load(handle)
        except OSError as exc:
            raise RegistryConfigError(
                f"Cannot read endpoint registry: {data_path}",
                {"path": str(data_path), "error": str(exc)}
            ) from exc
        except ValueError as exc:
            raise RegistryConfigError(
                f"Endpoint registry is not valid JSON: {data_path}",
                {"path": str(data_path), "error": str(exc)}
            ) from exc

        registry = cls.from_mapping(payload)
        logger.info("Loaded endpoint registry", path=str(data_path), endpoints=registry.ids())
        return registry

    @classmethod
    def load_default(cls) -> "EndpointRegistry":
        """Load the endpoints shipped with the gateway."""
        return cls.from_file(DEFAULT_DATA_FILE)

    def describe(self, endpoint_id: str) -> EndpointDescriptor:
        """Return the descriptor for ``endpoint_id`` or raise EndpointNotFoundError."""
        descriptor = self._descriptors.get(endpoint_id)
        if descriptor is None:
            raise EndpointNotFoundError(endpoint_id)
        return descriptor

    def get(self, endpoint_id: str) -> Optional[EndpointDescriptor]:
        return self._descriptors.get(endpoint_id)

    def ids(self) -> List[str]:
        return list(self._descriptors)

    def __contains__(self, endpoint_id: object) -> bool:
        return endpoint_id in self._descriptors

    def __len__(self) -> int:
        return len(self._descriptors)
