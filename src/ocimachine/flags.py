"""Create-flag table: every option the driver accepts, with its env var and default."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, List, Optional

DEFAULT_NODE_NAME_PREFIX = "oci-node-driver-"
DEFAULT_SSH_PORT = 22
DEFAULT_SSH_USER = "opc"
DEFAULT_IMAGE = "Oracle-Linux-7.7"
DEFAULT_DOCKER_PORT = 2376
DEFAULT_POLL_INTERVAL = 5
DEFAULT_POLL_TIMEOUT = 900


@dataclass(frozen=True)
class Flag:
    """One create flag.

    Args:
        name: Flag name without the leading dashes.
        usage: Help text.
        envvar: Environment variable that supplies the value.
        default: Default value, or None when unset.
        kind: One of 'string', 'int', 'bool'.
    """

    name: str
    usage: str
    envvar: str
    default: Optional[Any] = None
    kind: str = "string"

    @property
    def dest(self) -> str:
        """Python identifier click uses for this flag."""
        return self.name.replace("-", "_")


CREATE_FLAGS: List[Flag] = [
    Flag(
        "oci-node-availability-domain",
        "Specify availability domain the node(s) should use",
        "OCI_NODE_AVAILABILITY_DOMAIN",
    ),
    Flag(
        "oci-node-docker-port",
        "Specify Docker port",
        "OCI_NODE_DOCKER_PORT",
        DEFAULT_DOCKER_PORT,
        "int",
    ),
    Flag(
        "oci-fingerprint",
        "Specify fingerprint corresponding to the specified user's private API Key",
        "OCI_FINGERPRINT",
    ),
    Flag(
        "oci-node-image",
        "Specify image the node(s) should use",
        "OCI_NODE_IMAGE",
        DEFAULT_IMAGE,
    ),
    Flag(
        "oci-node-compartment-id",
        "Specify OCID of the compartment in which to create node(s)",
        "OCI_NODE_COMPARTMENT_ID",
    ),
    Flag(
        "oci-private-key-contents",
        "Specify private API key contents for the specified OCI user, in PEM format",
        "OCI_PRIVATE_KEY_CONTENTS",
    ),
    Flag(
        "oci-private-key-path",
        "Specify private API key path for the specified OCI user, in PEM format",
        "OCI_PRIVATE_KEY_PATH",
    ),
    Flag(
        "oci-private-key-passphrase",
        "Specify passphrase (if any) that protects private key file the specified OCI user",
        "OCI_PRIVATE_KEY_PASSPHRASE",
        "",
    ),
    Flag(
        "oci-region",
        "Specify region in which to create node(s)",
        "OCI_REGION",
    ),
    Flag(
        "oci-node-shape",
        "Specify instance shape of the node(s)",
        "OCI_NODE_SHAPE",
    ),
    Flag(
        "oci-ssh-port",
        "Specify SSH port for the node(s)",
        "OCI_SSH_PORT",
        DEFAULT_SSH_PORT,
        "int",
    ),
    Flag(
        "oci-ssh-user",
        "Specify SSH user for the node(s)",
        "OCI_SSH_USER",
        DEFAULT_SSH_USER,
    ),
    Flag(
        "oci-subnet-id",
        "Specify pre-existing subnet id in which you want to create the node(s)",
        "OCI_SUBNET_ID",
    ),
    Flag(
        "oci-tenancy-id",
        "Specify OCID of the tenancy in which to create node(s)",
        "OCI_TENANCY_ID",
        "",
    ),
    Flag(
        "oci-user-id",
        "Specify OCID of a user who has access to the specified tenancy/compartment",
        "OCI_USER_ID",
        "",
    ),
    Flag(
        "oci-vcn-compartment-id",
        "Specify OCID of the compartment in which the VCN exists",
        "OCI_VCN_COMPARTMENT_ID",
    ),
    Flag(
        "oci-vcn-id",
        "Specify pre-existing VCN id in which you want to create the node(s)",
        "OCI_VCN_ID",
    ),
    Flag(
        "oci-is-rover",
        "Specify if the plugin is used for a oci rover device",
        "OCI_IS_ROVER",
        False,
        "bool",
    ),
    Flag(
        "oci-rover-compute-endpoint",
        "Specify compute endpoint for rover",
        "OCI_ROVER_COMPUTE_ENDPOINT",
    ),
    Flag(
        "oci-rover-network-endpoint",
        "Specify network endpoint for rover",
        "OCI_ROVER_NETWORK_ENDPOINT",
    ),
    Flag(
        "oci-rover-cert-path",
        "Specify rover CA certificate path, in PEM format",
        "OCI_ROVER_CERT_PATH",
    ),
    Flag(
        "oci-rover-cert-content",
        "Specify rover CA certificate content, in PEM format",
        "OCI_ROVER_CERT_CONTENT",
    ),
    Flag(
        "oci-poll-interval",
        "Seconds between lifecycle state reads while waiting on an instance",
        "OCI_POLL_INTERVAL",
        DEFAULT_POLL_INTERVAL,
        "int",
    ),
    Flag(
        "oci-poll-timeout",
        "Maximum seconds to wait for an instance to reach its target state",
        "OCI_POLL_TIMEOUT",
        DEFAULT_POLL_TIMEOUT,
        "int",
    ),
]


def get_flag(name: str) -> Flag:
    """Look up a flag by name.

    Raises:
        KeyError: If no such flag exists.
    """
    for flag in CREATE_FLAGS:
        if flag.name == name:
            return flag
    raise KeyError(name)
