"""
Driver configuration — validated from create flags, env vars and YAML.

``DriverConfig.from_options`` is the single place configuration enters
the driver. It checks required values in a fixed order and reads key
and certificate files up front, so every configuration problem surfaces
as a ConfigurationError before the first API call.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

import yaml
from cryptography import x509
from pydantic import BaseModel, Field

from .errors import ConfigurationError
from .flags import CREATE_FLAGS, DEFAULT_IMAGE, DEFAULT_SSH_PORT, DEFAULT_SSH_USER, get_flag
from .polling import PollPolicy

logger = logging.getLogger(__name__)

CONFIG_FILE = Path("config") / "config.yaml"

# (flag, message) pairs checked in order; the first empty one fails.
_REQUIRED = [
    ("oci-vcn-id", "no OCI VCNID specified (--oci-vcn-id)"),
    ("oci-subnet-id", "no OCI subnetId specified (--oci-subnet-id)"),
    ("oci-tenancy-id", "no OCI tenancy specified (--oci-tenancy-id)"),
    ("oci-node-compartment-id", "no OCI compartment specified for node (--oci-node-compartment-id)"),
    ("oci-vcn-compartment-id", "no OCI compartment specified for VCN (--oci-vcn-compartment-id)"),
    ("oci-user-id", "no OCI user id specified (--oci-user-id)"),
    ("oci-region", "no OCI region specified (--oci-region)"),
    ("oci-node-availability-domain", "no OCI node availability domain specified (--oci-node-availability-domain)"),
    ("oci-node-shape", "no OCI node shape specified (--oci-node-shape)"),
    ("oci-fingerprint", "no OCI fingerprint specified (--oci-fingerprint)"),
]


class DriverConfig(BaseModel):
    """Everything the driver needs to talk to OCI and launch a node."""

    availability_domain: str
    compartment_id: str = Field(description="Compartment the node is created in")
    vcn_compartment_id: str
    vcn_id: str
    subnet_id: str
    shape: str
    image: str = DEFAULT_IMAGE
    tenancy_id: str
    user_id: str
    region: str
    fingerprint: str
    private_key_contents: str
    private_key_path: Optional[str] = None
    private_key_passphrase: str = ""
    docker_port: int = 2376
    ssh_user: str = DEFAULT_SSH_USER
    ssh_port: int = DEFAULT_SSH_PORT
    is_rover: bool = False
    rover_compute_endpoint: Optional[str] = None
    rover_network_endpoint: Optional[str] = None
    rover_cert_path: Optional[str] = None
    rover_cert_content: Optional[str] = None
    poll_interval: float = 5.0
    poll_timeout: float = 900.0

    @classmethod
    def from_options(cls, options: Mapping[str, Any]) -> "DriverConfig":
        """Validate flag values and build a config.

        Args:
            options: Values keyed by flag name (``oci-vcn-id``). Missing
                keys fall back to the flag's default.

        Returns:
            The validated DriverConfig.

        Raises:
            ConfigurationError: On the first missing or unusable value.
        """

        def opt(name: str) -> Any:
            value = options.get(name)
            if value is None:
                value = get_flag(name).default
            return value

        def text(name: str) -> str:
            value = opt(name)
            return "" if value is None else str(value).strip()

        for name, message in _REQUIRED:
            if not text(name):
                raise ConfigurationError(message)

        key_path = text("oci-private-key-path")
        key_contents = text("oci-private-key-contents")
        if not key_path and not key_contents:
            raise ConfigurationError(
                "no private key path or content specified "
                "(--oci-private-key-path || --oci-private-key-contents)"
            )
        if not key_contents:
            key_contents = _read_text(key_path, "private key")

        is_rover = _parse_bool("oci-is-rover", opt("oci-is-rover"))
        cert_path = text("oci-rover-cert-path")
        cert_content = text("oci-rover-cert-content")
        if is_rover:
            if not text("oci-rover-compute-endpoint"):
                raise ConfigurationError(
                    "no rover compute endpoint specified (--oci-rover-compute-endpoint)"
                )
            if not text("oci-rover-network-endpoint"):
                raise ConfigurationError(
                    "no rover network endpoint specified (--oci-rover-network-endpoint)"
                )
            if not cert_content and not cert_path:
                raise ConfigurationError(
                    "no rover certificate path or content specified "
                    "(--oci-rover-cert-path || --oci-rover-cert-content)"
                )
            if not cert_content:
                cert_content = _read_text(cert_path, "rover certificate")
            validate_certificate(cert_content)

        try:
            poll_interval = float(opt("oci-poll-interval"))
            poll_timeout = float(opt("oci-poll-timeout"))
            docker_port = int(opt("oci-node-docker-port"))
            ssh_port = int(opt("oci-ssh-port"))
        except (TypeError, ValueError) as exc:
            raise ConfigurationError(f"invalid numeric option: {exc}") from exc
        if poll_interval <= 0:
            raise ConfigurationError(
                f"poll interval must be positive (--oci-poll-interval): {poll_interval:g}"
            )
        if poll_timeout < 0:
            raise ConfigurationError(
                f"poll timeout must not be negative (--oci-poll-timeout): {poll_timeout:g}"
            )

        return cls(
            availability_domain=text("oci-node-availability-domain"),
            compartment_id=text("oci-node-compartment-id"),
            vcn_compartment_id=text("oci-vcn-compartment-id"),
            vcn_id=text("oci-vcn-id"),
            subnet_id=text("oci-subnet-id"),
            shape=text("oci-node-shape"),
            image=text("oci-node-image") or DEFAULT_IMAGE,
            tenancy_id=text("oci-tenancy-id"),
            user_id=text("oci-user-id"),
            region=text("oci-region"),
            fingerprint=text("oci-fingerprint"),
            private_key_contents=key_contents,
            private_key_path=key_path or None,
            private_key_passphrase=str(opt("oci-private-key-passphrase") or ""),
            docker_port=docker_port,
            ssh_user=text("oci-ssh-user") or DEFAULT_SSH_USER,
            ssh_port=ssh_port,
            is_rover=is_rover,
            rover_compute_endpoint=text("oci-rover-compute-endpoint") or None,
            rover_network_endpoint=text("oci-rover-network-endpoint") or None,
            rover_cert_path=cert_path or None,
            rover_cert_content=cert_content or None,
            poll_interval=poll_interval,
            poll_timeout=poll_timeout,
        )

    def poll_policy(self) -> PollPolicy:
        """Convergence bounds derived from the poll flags."""
        return PollPolicy.from_timeout(self.poll_interval, self.poll_timeout)

    def sdk_config(self) -> Dict[str, Any]:
        """Build the OCI SDK config dict from the credentials."""
        config: Dict[str, Any] = {
            "user": self.user_id,
            "fingerprint": self.fingerprint,
            "tenancy": self.tenancy_id,
            "region": self.region,
            "key_content": self.private_key_contents,
        }
        if self.private_key_passphrase:
            config["pass_phrase"] = self.private_key_passphrase
        return config


_TRUE = {"true", "1", "yes", "on"}
_FALSE = {"false", "0", "no", "off", ""}


def _parse_bool(name: str, value: Any) -> bool:
    """Interpret a flag value from the CLI, env or YAML as a boolean.

    Raises:
        ConfigurationError: If a string is not a recognised boolean.
    """
    if value is None:
        return False
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in _TRUE:
        return True
    if text in _FALSE:
        return False
    raise ConfigurationError(f"invalid boolean for --{name}: {value!r}")


def _read_text(path: str, what: str) -> str:
    """Read a PEM file named by a flag."""
    try:
        return Path(path).expanduser().read_text(encoding="utf-8")
    except OSError as exc:
        raise ConfigurationError(f"cannot read {what} {path}: {exc}") from exc


def validate_certificate(pem: str) -> None:
    """Check that ``pem`` holds at least one X.509 certificate.

    Raises:
        ConfigurationError: If the content does not parse.
    """
    try:
        certs = x509.load_pem_x509_certificates(pem.encode("utf-8"))
    except ValueError as exc:
        raise ConfigurationError(f"invalid rover certificate: {exc}") from exc
    if not certs:
        raise ConfigurationError("invalid rover certificate: no certificate found")


def load_config_file(path: Path) -> Dict[str, Any]:
    """Load flag defaults from a YAML file.

    Keys are flag names without the leading dashes. Unknown keys are
    ignored with a warning. A missing file yields an empty dict.

    Raises:
        ConfigurationError: If the file is not valid YAML or not a mapping.
    """
    path = Path(path).expanduser()
    if not path.exists():
        return {}
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as exc:
        raise ConfigurationError(f"invalid config file {path}: {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigurationError(f"config file {path} must contain a mapping")

    known = {flag.name for flag in CREATE_FLAGS}
    options: Dict[str, Any] = {}
    for key, value in data.items():
        if key not in known:
            logger.warning("Ignoring unknown key %r in %s", key, path)
            continue
        options[key] = value
    return options
