"""
Pydantic models for the driver's state and the requests it submits.

The cloud provider owns the instance itself; the driver only keeps the
handle it was given (InstanceRecord) and the immutable description of
what it asked for (LaunchRequest).
"""

from __future__ import annotations

from enum import Enum
from typing import Dict, Optional

from pydantic import BaseModel, ConfigDict, Field

from .errors import InstanceStateError


class MachineState(str, Enum):
    """Machine state as reported to the orchestrator."""

    NONE = "none"
    RUNNING = "running"
    PAUSED = "paused"
    SAVED = "saved"
    STOPPED = "stopped"
    STOPPING = "stopping"
    STARTING = "starting"
    ERROR = "error"
    TIMEOUT = "timeout"


class InstanceLifecycleState:
    """Lifecycle state values OCI reports for a compute instance.

    The SDK returns plain strings; anything it does not recognise comes
    back as ``UNKNOWN_ENUM_VALUE``.
    """

    MOVING = "MOVING"
    PROVISIONING = "PROVISIONING"
    RUNNING = "RUNNING"
    STARTING = "STARTING"
    STOPPING = "STOPPING"
    STOPPED = "STOPPED"
    CREATING_IMAGE = "CREATING_IMAGE"
    TERMINATING = "TERMINATING"
    TERMINATED = "TERMINATED"
    UNKNOWN = "UNKNOWN_ENUM_VALUE"


class InstanceAction:
    """Power actions accepted by ``ComputeClient.instance_action``."""

    START = "START"
    STOP = "STOP"


class InstanceRecord(BaseModel):
    """Per-instance state held by one driver.

    Single-writer rules:
        instance_id: written once, by ``create()``, as soon as the launch
            is accepted. Never overwritten; a second machine needs a
            second record.
        ip_address: written by ``get_ip()`` only; cleared by ``remove()``.
    """

    instance_id: Optional[str] = None
    ip_address: Optional[str] = None

    def assign_instance_id(self, instance_id: str) -> None:
        """Bind this record to a newly launched instance.

        Raises:
            InstanceStateError: If the record already holds an instance.
        """
        if self.instance_id:
            raise InstanceStateError(
                f"machine already bound to instance {self.instance_id}"
            )
        self.instance_id = instance_id

    def require_instance_id(self) -> str:
        """Return the bound instance ID.

        Raises:
            InstanceStateError: If no instance has been created yet.
        """
        if not self.instance_id:
            raise InstanceStateError("machine has no instance; run create first")
        return self.instance_id


class LaunchRequest(BaseModel):
    """Immutable description of one instance launch.

    Built once from configuration after every name has been resolved to
    an OCID, and submitted exactly once.
    """

    model_config = ConfigDict(frozen=True)

    display_name: str
    availability_domain: str
    compartment_id: str
    shape: str
    subnet_id: str
    image_id: str
    metadata: Dict[str, str] = Field(default_factory=dict)
    assign_public_ip: Optional[bool] = None
    fault_domain: Optional[str] = None
    boot_volume_size_in_gbs: Optional[int] = None
    is_monitoring_disabled: Optional[bool] = None
