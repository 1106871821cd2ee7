"""
Machine store — per-machine state on the orchestrator host.

Each machine owns a directory under ``<home>/machines/<name>/`` holding
its SSH key pair and a ``config.json`` with the driver configuration
and the instance record. The JSON includes the API private key, so it
is written owner read/write only.
"""

from __future__ import annotations

import json
import logging
import os
import shutil
from pathlib import Path
from typing import List, Optional

from pydantic import BaseModel, Field

from .config import DriverConfig
from .driver import OCIDriver
from .errors import DriverError
from .models import InstanceRecord

logger = logging.getLogger(__name__)

STATE_FILE = "config.json"


class StoredMachine(BaseModel):
    """What is persisted for one machine."""

    name: str
    driver: str = "oci"
    config: DriverConfig
    record: InstanceRecord = Field(default_factory=InstanceRecord)


class MachineStore:
    """Reads and writes machine state under a home directory.

    Args:
        home: Store root (``~/.ocimachine`` by default).
    """

    def __init__(self, home: Path) -> None:
        self.home = Path(home).expanduser()
        self._machines_dir = self.home / "machines"

    def machine_dir(self, name: str) -> Path:
        return self._machines_dir / name

    def exists(self, name: str) -> bool:
        return (self.machine_dir(name) / STATE_FILE).exists()

    def save(self, driver: OCIDriver) -> Path:
        """Persist a configured driver's config and instance record.

        Returns:
            Path to the saved JSON file.
        """
        if driver.config is None:
            raise DriverError(f"machine {driver.machine_name} has no configuration to save")

        entry = StoredMachine(
            name=driver.machine_name,
            driver=driver.driver_name(),
            config=driver.config,
            record=driver.record,
        )
        directory = self.machine_dir(driver.machine_name)
        directory.mkdir(mode=0o750, parents=True, exist_ok=True)

        path = directory / STATE_FILE
        fd = os.open(str(path), os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, "w", encoding="utf-8") as fh:
            fh.write(json.dumps(entry.model_dump(mode="json"), indent=2))
        os.chmod(path, 0o600)
        logger.debug("Saved machine %s to %s", driver.machine_name, path)
        return path

    def load(self, name: str, **driver_kwargs) -> OCIDriver:
        """Rebuild a driver from saved state.

        Args:
            name: Machine name.
            **driver_kwargs: Passed through to OCIDriver (client factory,
                cancel event).

        Raises:
            DriverError: If the machine does not exist or its state
                cannot be read.
        """
        path = self.machine_dir(name) / STATE_FILE
        if not path.exists():
            raise DriverError(f"machine {name} does not exist")
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
            entry = StoredMachine.model_validate(data)
        except (OSError, ValueError) as exc:
            raise DriverError(f"cannot load machine {name}: {exc}") from exc

        return OCIDriver(
            entry.name,
            self.home,
            config=entry.config,
            record=entry.record,
            **driver_kwargs,
        )

    def get(self, name: str) -> Optional[StoredMachine]:
        """Return the stored entry for ``name``, or None.

        Raises:
            DriverError: If the saved state cannot be read.
        """
        path = self.machine_dir(name) / STATE_FILE
        if not path.exists():
            return None
        try:
            return StoredMachine.model_validate(json.loads(path.read_text(encoding="utf-8")))
        except (OSError, ValueError) as exc:
            raise DriverError(f"cannot load machine {name}: {exc}") from exc

    def list_machines(self) -> List[StoredMachine]:
        """List all saved machines, skipping unreadable entries."""
        machines = []
        if not self._machines_dir.exists():
            return machines
        for f in sorted(self._machines_dir.glob(f"*/{STATE_FILE}")):
            try:
                data = json.loads(f.read_text(encoding="utf-8"))
                machines.append(StoredMachine.model_validate(data))
            except (OSError, ValueError) as exc:
                logger.warning("Skipping %s: %s", f, exc)
        return machines

    def remove(self, name: str) -> bool:
        """Delete a machine's directory, keys included.

        Returns:
            True if something was removed.
        """
        directory = self.machine_dir(name)
        if not directory.exists():
            return False
        shutil.rmtree(directory)
        logger.debug("Removed machine directory %s", directory)
        return True
