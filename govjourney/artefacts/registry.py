"""
Registry of available services and their artefacts.

The orchestrator never touches the filesystem; this registry is the loading
layer callers use to assemble ServiceArtefacts before a request.
"""

import logging
from pathlib import Path
from typing import Dict, List, Optional, Union

from govjourney.artefacts.parser import ArtefactParser
from govjourney.artefacts.schema import CapabilityManifest, ServiceArtefacts
from govjourney.exceptions import ArtefactError

logger = logging.getLogger(__name__)


# Optional artefact files next to manifest.json, by ServiceArtefacts field
_OPTIONAL_FILES = {
    "policy": ("policy", "policy.json"),
    "state_model": ("state-model", "state-model.json"),
    "consent": ("consent", "consent.json"),
    "state_instructions": ("instructions", "state-instructions.json"),
}


class ServiceRegistry:
    """
    Store and look up services by id.

    Example:
        ```python
        registry = ServiceRegistry()
        registry.load_from_directory("data/services")
        artefacts = registry.get("dwp.apply-universal-credit")
        ```
    """

    def __init__(self):
        self._services: Dict[str, ServiceArtefacts] = {}

    def register(self, artefacts: ServiceArtefacts) -> None:
        """Register (or replace) a service's artefacts."""
        self._services[artefacts.service_id] = artefacts
        logger.info(f"Registered service: {artefacts.service_id}")

    def register_manifest(self, manifest: CapabilityManifest) -> None:
        self.register(ServiceArtefacts(manifest=manifest))

    def get(self, service_id: str) -> Optional[ServiceArtefacts]:
        return self._services.get(service_id)

    def lookup(self, service_id: str) -> Optional[CapabilityManifest]:
        artefacts = self._services.get(service_id)
        return artefacts.manifest if artefacts else None

    def has(self, service_id: str) -> bool:
        return service_id in self._services

    def list_services(self) -> List[str]:
        return list(self._services.keys())

    def __len__(self) -> int:
        return len(self._services)

    def load_service_directory(self, path: Union[str, Path]) -> ServiceArtefacts:
        """
        Load one service directory.

        Expects manifest.json plus any of policy.json, state-model.json,
        consent.json and state-instructions.json. Missing optional files
        simply leave the corresponding feature disabled.

        Raises:
            FileNotFoundError: If manifest.json is missing
            ArtefactError: If any present artefact is invalid
        """
        path = Path(path)
        manifest = ArtefactParser.parse_file(path / "manifest.json", kind="manifest")

        optional = {}
        for field_name, (kind, filename) in _OPTIONAL_FILES.items():
            file_path = path / filename
            if file_path.is_file():
                optional[field_name] = ArtefactParser.parse_file(file_path, kind=kind)

        artefacts = ServiceArtefacts(manifest=manifest, **optional)
        self.register(artefacts)
        return artefacts

    def load_from_directory(self, path: Union[str, Path]) -> int:
        """
        Load every service subdirectory under ``path``.

        Subdirectories without a valid manifest are skipped with a warning.

        Returns:
            Number of services loaded
        """
        path = Path(path)
        loaded = 0

        for entry in sorted(path.iterdir()):
            if not entry.is_dir():
                continue
            try:
                self.load_service_directory(entry)
                loaded += 1
            except (FileNotFoundError, ArtefactError, ValueError) as e:
                logger.warning(f"Skipping {entry.name}: {e}")

        logger.info(f"Loaded {loaded} services from {path}")
        return loaded
