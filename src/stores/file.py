"""
File State Store - keeps resource state in a single JSON document.

The document maps resource name -> serialized ResourceState. Writes go to a
temporary file that is then renamed over the original.
"""

import json
import logging
import os
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from models import ResourceState
from stores.base import StateStore

logger = logging.getLogger(__name__)


class FileStateStore(StateStore):
    """State store backed by a local JSON file."""

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)

    def _read(self) -> Dict[str, Any]:
        if not self.path.exists():
            return {}
        with open(self.path, "r", encoding="utf-8") as f:
            content = f.read()
        if not content.strip():
            return {}
        data = json.loads(content)
        return data.get("resources", {})

    def _write(self, resources: Dict[str, Any]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_name(self.path.name + ".tmp")
        with open(tmp_path, "w", encoding="utf-8") as f:
            json.dump(
                {"version": 1, "resources": resources}, f, indent=2, sort_keys=True
            )
        os.replace(tmp_path, self.path)

    async def load(self, name: str) -> Optional[ResourceState]:
        data = self._read().get(name)
        if data is None:
            return None
        return ResourceState.from_dict(data)

    async def save(self, name: str, state: ResourceState) -> None:
        resources = self._read()
        resources[name] = state.to_dict()
        self._write(resources)
        logger.debug(f"Saved state of {name} to {self.path}")

    async def delete(self, name: str) -> bool:
        resources = self._read()
        if name not in resources:
            return False
        del resources[name]
        self._write(resources)
        logger.info(f"Removed state of {name} from {self.path}")
        return True

    async def list_names(self) -> List[str]:
        return sorted(self._read().keys())
