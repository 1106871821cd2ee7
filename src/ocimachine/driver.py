"""
Machine drivers — the lifecycle interface the orchestrator calls.

MachineDriver is the abstract interface: create, start, stop, restart,
remove, and report address and state. OCIDriver implements it on top
of OCIClient. The driver owns two things: the validated DriverConfig
and an InstanceRecord holding the instance handle and cached IP. A
fresh OCIClient is built for every operation; nothing else is shared
between calls.
"""

from __future__ import annotations

import logging
import threading
from pathlib import Path
from typing import Any, Callable, List, Mapping, Optional

from .client import OCIClient, create_client
from .cloud_init import build_startup_script, encode_user_data
from .config import DriverConfig
from .errors import ConfigurationError, DriverError, InstanceStateError
from .flags import CREATE_FLAGS, DEFAULT_NODE_NAME_PREFIX, DEFAULT_SSH_PORT, DEFAULT_SSH_USER, Flag
from .models import InstanceLifecycleState, InstanceRecord, MachineState
from .ssh import write_key_pair

logger = logging.getLogger(__name__)

ROVER_CA_FILE = "rover-ca.pem"

_STATE_MAP = {
    InstanceLifecycleState.RUNNING: MachineState.RUNNING,
    InstanceLifecycleState.STOPPED: MachineState.STOPPED,
    InstanceLifecycleState.TERMINATED: MachineState.STOPPED,
    InstanceLifecycleState.STOPPING: MachineState.STOPPING,
    InstanceLifecycleState.TERMINATING: MachineState.STOPPING,
    InstanceLifecycleState.STARTING: MachineState.STARTING,
    InstanceLifecycleState.PROVISIONING: MachineState.STARTING,
    InstanceLifecycleState.CREATING_IMAGE: MachineState.STARTING,
}


def map_lifecycle_state(lifecycle_state: Any) -> MachineState:
    """Map an OCI lifecycle state to a MachineState.

    Total over its input: moving, unknown and future states, as well as
    None, map to MachineState.NONE.
    """
    if not isinstance(lifecycle_state, str):
        return MachineState.NONE
    return _STATE_MAP.get(lifecycle_state.upper(), MachineState.NONE)


# ---------------------------------------------------------------------------
# Driver interface (abstract base)
# ---------------------------------------------------------------------------

class MachineDriver:
    """Abstract base for machine drivers.

    Args:
        machine_name: Name the orchestrator knows the machine by.
        store_path: Root of the orchestrator's machine store.
    """

    def __init__(self, machine_name: str, store_path: Path) -> None:
        self.machine_name = machine_name
        self.store_path = Path(store_path).expanduser()
        self.ssh_user = DEFAULT_SSH_USER
        self.ssh_port = DEFAULT_SSH_PORT

    def resolve_store_path(self, filename: str) -> Path:
        """Path of a file inside this machine's directory."""
        return self.store_path / "machines" / self.machine_name / filename

    def get_ssh_key_path(self) -> Path:
        """Private key used to reach the machine."""
        return self.resolve_store_path("id_rsa")

    def get_machine_name(self) -> str:
        """Return the name of the machine."""
        logger.debug("%s.get_machine_name()", self.driver_name())
        return self.machine_name

    def driver_name(self) -> str:
        raise NotImplementedError

    def get_create_flags(self) -> List[Flag]:
        raise NotImplementedError

    def set_config_from_flags(self, options: Mapping[str, Any]) -> None:
        raise NotImplementedError

    def pre_create_check(self) -> None:
        """Validate that creation can succeed before anything is created."""

    def create(self) -> None:
        raise NotImplementedError

    def remove(self) -> None:
        raise NotImplementedError

    def kill(self) -> None:
        raise NotImplementedError

    def start(self) -> None:
        raise NotImplementedError

    def stop(self) -> None:
        raise NotImplementedError

    def restart(self) -> None:
        """Restart the machine.

        Providers without a native restart stop and then start.
        """
        self.stop()
        self.start()

    def get_ip(self) -> str:
        raise NotImplementedError

    def get_ssh_hostname(self) -> str:
        raise NotImplementedError

    def get_ssh_port(self) -> int:
        raise NotImplementedError

    def get_ssh_username(self) -> str:
        raise NotImplementedError

    def get_url(self) -> str:
        raise NotImplementedError

    def get_state(self) -> MachineState:
        raise NotImplementedError


# ---------------------------------------------------------------------------
# OCI driver
# ---------------------------------------------------------------------------

class OCIDriver(MachineDriver):
    """Machine driver backed by OCI compute instances.

    Args:
        machine_name: Name the orchestrator knows the machine by.
        store_path: Root of the machine store.
        config: Validated configuration, or None until
            ``set_config_from_flags`` runs.
        record: Instance record restored from the store.
        client_factory: Builds an OCIClient from the configuration.
        cancel: Optional event that aborts lifecycle waits.
    """

    def __init__(
        self,
        machine_name: str,
        store_path: Path,
        config: Optional[DriverConfig] = None,
        record: Optional[InstanceRecord] = None,
        client_factory: Callable[..., OCIClient] = create_client,
        cancel: Optional[threading.Event] = None,
    ) -> None:
        super().__init__(machine_name, store_path)
        self.config = config
        self.record = record or InstanceRecord()
        self._client_factory = client_factory
        self._cancel = cancel
        if config is not None:
            self.ssh_user = config.ssh_user
            self.ssh_port = config.ssh_port

    def driver_name(self) -> str:
        return "oci"

    def get_create_flags(self) -> List[Flag]:
        logger.debug("oci.get_create_flags()")
        return list(CREATE_FLAGS)

    def set_config_from_flags(self, options: Mapping[str, Any]) -> None:
        """Validate flag values and adopt them as the driver's configuration.

        Raises:
            ConfigurationError: On the first missing or unusable value.
        """
        logger.debug("oci.set_config_from_flags(...)")
        self.config = DriverConfig.from_options(options)
        self.ssh_user = self.config.ssh_user
        self.ssh_port = self.config.ssh_port

    def pre_create_check(self) -> None:
        """Verify the node image exists, which also validates the credentials.

        Rover devices are not checked.
        """
        logger.debug("oci.pre_create_check()")
        config = self._require_config()
        if config.is_rover:
            return
        logger.info("Verifying node image availability...")
        self._client().resolve_image_id(config.compartment_id, config.image)

    def create(self) -> None:
        """Generate an SSH key pair and launch a RUNNING instance.

        The instance ID is recorded as soon as the launch is accepted, so
        a failed wait still leaves a handle ``remove()`` can use.
        """
        logger.debug("oci.create()")
        config = self._require_config()
        if self.record.instance_id:
            raise InstanceStateError(
                f"machine {self.machine_name} already has instance {self.record.instance_id}"
            )

        client = self._client()
        request = client.build_launch_request(
            config, DEFAULT_NODE_NAME_PREFIX + self.machine_name, {},
        )

        # Keys are written only once every name has resolved.
        public_key = write_key_pair(self.get_ssh_key_path())
        request = request.model_copy(update={"metadata": {
            "ssh_authorized_keys": public_key,
            "user_data": encode_user_data(build_startup_script(config.ssh_user)),
        }})

        instance_id = client.launch_instance(request)
        self.record.assign_instance_id(instance_id)
        client.wait_for_state(instance_id, InstanceLifecycleState.RUNNING)

        ip = ""
        try:
            ip = self.get_ip()
        except DriverError as exc:
            logger.warning("Could not resolve IP for %s: %s", instance_id, exc)
        logger.info("created instance ID %s, IP address %s", instance_id, ip)

    def remove(self) -> None:
        """Terminate the instance without waiting."""
        logger.debug("oci.remove()")
        instance_id = self.record.require_instance_id()
        self._client().terminate_instance(instance_id)
        self.record.ip_address = None

    def kill(self) -> None:
        """Same as remove(); OCI has no separate hard stop."""
        logger.debug("oci.kill()")
        self.remove()

    def start(self) -> None:
        logger.debug("oci.start()")
        self._client().start_instance(self.record.require_instance_id())

    def stop(self) -> None:
        logger.debug("oci.stop()")
        self._client().stop_instance(self.record.require_instance_id())

    def restart(self) -> None:
        logger.debug("oci.restart()")
        self._client().restart_instance(self.record.require_instance_id())

    def get_ip(self) -> str:
        """Return the instance's IP, looking it up once and caching it."""
        logger.debug("oci.get_ip()")
        if not self.record.ip_address:
            config = self._require_config()
            instance_id = self.record.require_instance_id()
            self.record.ip_address = self._client().get_instance_ip(
                instance_id, config.compartment_id,
            )
        return self.record.ip_address

    def get_ssh_hostname(self) -> str:
        logger.debug("oci.get_ssh_hostname()")
        return self.get_ip()

    def get_ssh_port(self) -> int:
        logger.debug("oci.get_ssh_port()")
        return self.ssh_port

    def get_ssh_username(self) -> str:
        logger.debug("oci.get_ssh_username()")
        return self.ssh_user

    def get_url(self) -> str:
        """Docker-compatible URL, e.g. ``tcp://1.2.3.4:2376``."""
        logger.debug("oci.get_url()")
        config = self._require_config()
        ip = self.get_ip()
        if not ip:
            return ""
        return f"tcp://{ip}:{config.docker_port}"

    def get_state(self) -> MachineState:
        logger.debug("oci.get_state()")
        instance = self._client().get_instance(self.record.require_instance_id())
        return map_lifecycle_state(instance.lifecycle_state)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _require_config(self) -> DriverConfig:
        if self.config is None:
            raise ConfigurationError(
                f"driver for {self.machine_name} is not configured"
            )
        return self.config

    def _client(self) -> OCIClient:
        config = self._require_config()
        return self._client_factory(
            config, ca_bundle_path=self._ca_bundle_path(), cancel=self._cancel,
        )

    def _ca_bundle_path(self) -> Optional[Path]:
        """Trust root file for rover endpoints, materialised if needed."""
        config = self._require_config()
        if not config.is_rover:
            return None
        if config.rover_cert_path:
            path = Path(config.rover_cert_path).expanduser()
            if path.is_file():
                return path
        if not config.rover_cert_content:
            raise ConfigurationError("no rover certificate available")
        path = self.resolve_store_path(ROVER_CA_FILE)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(config.rover_cert_content, encoding="utf-8")
        return path
