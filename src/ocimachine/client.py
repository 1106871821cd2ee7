"""
OCI Client — the compute, virtual network and identity calls the driver makes.

Wraps the three OCI SDK service clients behind the operations the
machine lifecycle needs: resolve names to OCIDs, launch an instance,
drive power actions, wait for a lifecycle state, and find an address.

Every asynchronous operation follows the same pattern: submit once,
then poll ``get_instance`` until the lifecycle state matches. The poll
is bounded by a PollPolicy and can be cancelled; a failed status read
ends the wait at once. Only image listing retries failed requests.

Credentials come from a DriverConfig; the SDK signs requests with the
user's API key. Rover devices expose their own compute and network
endpoints behind a private CA, so in rover mode those two clients are
pointed at the device and trust the rover certificate.
"""

from __future__ import annotations

import logging
import threading
import time
from pathlib import Path
from typing import Any, Callable, Optional

import oci

from .config import DriverConfig
from .errors import ConfigurationError, ImageNotFoundError, ProviderError
from .models import InstanceAction, InstanceLifecycleState, LaunchRequest
from .polling import PollPolicy, retry_call, wait_until

logger = logging.getLogger(__name__)

IMAGE_LIST_ATTEMPTS = 3
IMAGE_LIST_RETRY_INTERVAL = 3.0

ROVER_AVAILABILITY_DOMAIN = "OREI-1-AD-1"
ROVER_FAULT_DOMAIN = "FAULT-DOMAIN-1"
ROVER_BOOT_VOLUME_GB = 50

# Errors an SDK call can raise. The vendored requests exceptions derive
# from OSError.
_PROVIDER_ERRORS = (oci.exceptions.ServiceError, oci.exceptions.ClientError, OSError)


def _no_retry() -> Any:
    """SDK retry strategy that never retries."""
    return oci.retry.NoneRetryStrategy()


class OCIClient:
    """Lifecycle operations against OCI compute, network and identity.

    Args:
        compute: ``oci.core.ComputeClient``.
        network: ``oci.core.VirtualNetworkClient``.
        identity: ``oci.identity.IdentityClient``.
        poll_policy: Bounds for lifecycle waits.
        cancel: Optional event that aborts an in-progress wait.
        sleep: Pause used between image-list retries.
    """

    def __init__(
        self,
        compute: Any,
        network: Any,
        identity: Any,
        poll_policy: Optional[PollPolicy] = None,
        cancel: Optional[threading.Event] = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._compute = compute
        self._network = network
        self._identity = identity
        self._poll_policy = poll_policy or PollPolicy()
        self._cancel = cancel
        self._sleep = sleep

    # ------------------------------------------------------------------
    # Name resolution
    # ------------------------------------------------------------------

    def resolve_availability_domain(self, compartment_id: str, requested: str) -> str:
        """Expand a short or lower-case availability domain name.

        Every domain in the compartment whose name contains the
        upper-cased request is a match; the last match in list order
        wins. With no match the request is returned as given.

        Args:
            compartment_id: Compartment (or tenancy) OCID.
            requested: Name as configured, e.g. ``ad-1``.

        Returns:
            Fully-qualified domain name, or ``requested`` unchanged.
        """
        logger.debug("Resolving availability domain from %s", requested)
        response = self._call(
            "list availability domains",
            self._identity.list_availability_domains,
            compartment_id,
        )

        needle = requested.upper()
        resolved = None
        for domain in response.data:
            if needle in domain.name:
                logger.debug("Availability domain %s", domain.name)
                resolved = domain.name

        if resolved is None:
            logger.warning(
                "Availability domain %s did not match any domain in %s; "
                "unresolved, using literal value",
                requested, compartment_id,
            )
            return requested
        return resolved

    def resolve_image_id(self, compartment_id: str, image_name: str) -> str:
        """Find the newest available image with the given display name.

        Images are listed newest first, so the first case-insensitive
        match is the most recent one. Each page request is retried on
        failure up to IMAGE_LIST_ATTEMPTS times with a constant pause.

        Args:
            compartment_id: Compartment OCID to search.
            image_name: Display name, e.g. ``Oracle-Linux-7.7``.

        Returns:
            The image OCID.

        Raises:
            ConfigurationError: If either argument is empty.
            ImageNotFoundError: If no page contains a match.
            ProviderError: If a page request fails after all retries.
        """
        if not image_name or not compartment_id:
            raise ConfigurationError(
                "cannot retrieve image ID without a compartment and image name"
            )

        logger.debug("Resolving image ID from %s", image_name)
        wanted = image_name.casefold()
        page: Optional[str] = None
        while True:
            response = self._list_images_page(compartment_id, page)
            for image in response.data:
                if (image.display_name or "").casefold() == wanted:
                    logger.info("Provisioning node using image %s", image.display_name)
                    return image.id

            page = response.next_page
            if not page:
                break

        raise ImageNotFoundError(image_name)

    def _list_images_page(self, compartment_id: str, page: Optional[str]) -> Any:
        def fetch() -> Any:
            return self._compute.list_images(
                compartment_id,
                sort_by="TIMECREATED",
                sort_order="DESC",
                lifecycle_state="AVAILABLE",
                page=page,
                retry_strategy=_no_retry(),
            )

        try:
            return retry_call(
                fetch,
                attempts=IMAGE_LIST_ATTEMPTS,
                interval=IMAGE_LIST_RETRY_INTERVAL,
                retry_on=_PROVIDER_ERRORS,
                sleep=self._sleep,
            )
        except _PROVIDER_ERRORS as exc:
            raise ProviderError(f"list images failed: {exc}") from exc

    # ------------------------------------------------------------------
    # Launch
    # ------------------------------------------------------------------

    def build_launch_request(
        self,
        config: DriverConfig,
        display_name: str,
        metadata: dict,
    ) -> LaunchRequest:
        """Resolve names and assemble the launch request.

        The image is always resolved by name. Standard mode also expands
        the availability domain; rover devices use a fixed domain and
        fault domain, a public IP, a 50 GB boot volume and no
        monitoring agent.

        Raises:
            ResolutionError: If the image cannot be found.
            ProviderError: If a lookup call fails.
        """
        if config.is_rover:
            logger.debug("Building rover launch request for %s", display_name)
            image_id = self.resolve_image_id(config.compartment_id, config.image)
            return LaunchRequest(
                display_name=display_name,
                availability_domain=ROVER_AVAILABILITY_DOMAIN,
                compartment_id=config.compartment_id,
                shape=config.shape,
                subnet_id=config.subnet_id,
                image_id=image_id,
                metadata=metadata,
                assign_public_ip=True,
                fault_domain=ROVER_FAULT_DOMAIN,
                boot_volume_size_in_gbs=ROVER_BOOT_VOLUME_GB,
                is_monitoring_disabled=True,
            )

        availability_domain = self.resolve_availability_domain(
            config.compartment_id, config.availability_domain,
        )
        image_id = self.resolve_image_id(config.compartment_id, config.image)
        return LaunchRequest(
            display_name=display_name,
            availability_domain=availability_domain,
            compartment_id=config.compartment_id,
            shape=config.shape,
            subnet_id=config.subnet_id,
            image_id=image_id,
            metadata=metadata,
        )

    def launch_instance(self, request: LaunchRequest) -> str:
        """Submit a launch request once.

        Returns:
            OCID of the new instance.

        Raises:
            ProviderError: If the submission fails; no instance exists.
        """
        details = _to_launch_details(request)
        logger.debug("Launching instance %s", request.display_name)
        response = self._call(
            "launch instance",
            self._compute.launch_instance,
            details,
            retry_strategy=_no_retry(),
        )
        instance_id = response.data.id
        logger.info("Launch accepted for %s: %s", request.display_name, instance_id)
        return instance_id

    def create_instance(self, request: LaunchRequest) -> str:
        """Launch an instance and wait until it is RUNNING.

        Returns:
            OCID of the running instance.

        Raises:
            ProviderError: If the submission fails.
            ConvergenceError: If the wait fails; the instance may exist.
        """
        instance_id = self.launch_instance(request)
        self.wait_for_state(instance_id, InstanceLifecycleState.RUNNING)
        return instance_id

    # ------------------------------------------------------------------
    # Instance operations
    # ------------------------------------------------------------------

    def get_instance(self, instance_id: str) -> Any:
        """Fetch an instance by OCID."""
        response = self._call("get instance", self._compute.get_instance, instance_id)
        return response.data

    def terminate_instance(self, instance_id: str) -> None:
        """Terminate an instance (does not wait)."""
        logger.debug("Terminating instance %s", instance_id)
        self._call("terminate instance", self._compute.terminate_instance, instance_id)

    def stop_instance(self, instance_id: str) -> None:
        """Stop an instance and wait for STOPPED."""
        self._power_action(instance_id, InstanceAction.STOP, InstanceLifecycleState.STOPPED)

    def start_instance(self, instance_id: str) -> None:
        """Start an instance and wait for RUNNING."""
        self._power_action(instance_id, InstanceAction.START, InstanceLifecycleState.RUNNING)

    def restart_instance(self, instance_id: str) -> None:
        """Stop then start an instance; start is skipped if stop fails."""
        self.stop_instance(instance_id)
        self.start_instance(instance_id)

    def _power_action(self, instance_id: str, action: str, target: str) -> None:
        logger.debug("Sending %s to instance %s", action, instance_id)
        self._call(
            f"instance action {action}",
            self._compute.instance_action,
            instance_id,
            action,
        )
        self.wait_for_state(instance_id, target)

    def wait_for_state(self, instance_id: str, target: str) -> Any:
        """Poll an instance until its lifecycle state equals ``target``.

        Returns:
            The converged instance.

        Raises:
            ProviderReadError: A status read failed; not retried.
            ConvergenceTimeoutError: The poll policy ran out.
            ConvergenceCancelledError: The cancel event was set.
        """

        def read() -> Any:
            return self._compute.get_instance(instance_id, retry_strategy=_no_retry()).data

        def still_pending(instance: Any) -> bool:
            return instance.lifecycle_state != target

        return wait_until(
            read,
            still_pending,
            policy=self._poll_policy,
            cancel=self._cancel,
            resource_id=instance_id,
            target_state=target,
        )

    def get_instance_ip(self, instance_id: str, compartment_id: str) -> str:
        """Return the public IP of the first VNIC, or its private IP.

        Raises:
            ProviderError: If a call fails or the instance has no VNICs.
        """
        attachments = self._call(
            "list VNIC attachments",
            self._compute.list_vnic_attachments,
            compartment_id,
            instance_id=instance_id,
        ).data
        if not attachments:
            raise ProviderError("instance does not have any configured VNICs")

        vnic = self._call(
            "get VNIC", self._network.get_vnic, attachments[0].vnic_id,
        ).data
        if vnic.public_ip is None:
            return vnic.private_ip
        return vnic.public_ip

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    @staticmethod
    def _call(description: str, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
        """Invoke an SDK method, wrapping failures in ProviderError."""
        try:
            return fn(*args, **kwargs)
        except _PROVIDER_ERRORS as exc:
            raise ProviderError(f"{description} failed: {exc}") from exc


def _to_launch_details(request: LaunchRequest) -> Any:
    """Convert a LaunchRequest to ``oci.core.models.LaunchInstanceDetails``."""
    models = oci.core.models

    vnic = models.CreateVnicDetails(subnet_id=request.subnet_id)
    if request.assign_public_ip is not None:
        vnic.assign_public_ip = request.assign_public_ip

    source = models.InstanceSourceViaImageDetails(image_id=request.image_id)
    if request.boot_volume_size_in_gbs is not None:
        source.boot_volume_size_in_gbs = request.boot_volume_size_in_gbs

    details = models.LaunchInstanceDetails(
        availability_domain=request.availability_domain,
        compartment_id=request.compartment_id,
        shape=request.shape,
        create_vnic_details=vnic,
        display_name=request.display_name,
        metadata=dict(request.metadata),
        source_details=source,
    )
    if request.fault_domain:
        details.fault_domain = request.fault_domain
    if request.is_monitoring_disabled is not None:
        details.agent_config = models.LaunchInstanceAgentConfigDetails(
            is_monitoring_disabled=request.is_monitoring_disabled,
        )
    return details


def create_client(
    config: DriverConfig,
    ca_bundle_path: Optional[Path] = None,
    cancel: Optional[threading.Event] = None,
) -> OCIClient:
    """Construct an OCIClient from driver configuration.

    Args:
        config: Validated driver configuration.
        ca_bundle_path: PEM trust root for rover endpoints; required in
            rover mode.
        cancel: Optional event that aborts lifecycle waits.

    Raises:
        ConfigurationError: If the credentials are rejected by the SDK or
            the rover trust root is missing.
    """
    sdk_config = config.sdk_config()
    try:
        oci.config.validate_config(sdk_config)
        if config.is_rover:
            compute = oci.core.ComputeClient(
                sdk_config, service_endpoint=config.rover_compute_endpoint,
            )
            network = oci.core.VirtualNetworkClient(
                sdk_config, service_endpoint=config.rover_network_endpoint,
            )
        else:
            compute = oci.core.ComputeClient(sdk_config)
            network = oci.core.VirtualNetworkClient(sdk_config)
        identity = oci.identity.IdentityClient(sdk_config)
    except (oci.exceptions.ClientError, ValueError) as exc:
        logger.debug("create OCI clients failed: %s", exc)
        raise ConfigurationError(f"invalid OCI configuration: {exc}") from exc

    if config.is_rover:
        if ca_bundle_path is None or not Path(ca_bundle_path).is_file():
            raise ConfigurationError(
                f"rover certificate bundle not found: {ca_bundle_path}"
            )
        for client in (compute, network):
            client.base_client.session.verify = str(ca_bundle_path)

    return OCIClient(
        compute,
        network,
        identity,
        poll_policy=config.poll_policy(),
        cancel=cancel,
    )
