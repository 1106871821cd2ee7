"""
SSH key-pair generation for new nodes.

The private key stays on the orchestrator host (owner read/write only);
the public key goes into the instance's ``ssh_authorized_keys`` metadata.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Tuple

from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa

logger = logging.getLogger(__name__)

SSH_KEY_BITS = 4096


def generate_key_pair(bits: int = SSH_KEY_BITS) -> Tuple[bytes, bytes]:
    """Generate an RSA key pair.

    Args:
        bits: Modulus size.

    Returns:
        Tuple of (private key as PKCS#1 PEM, public key as an
        authorized_keys line ending in a newline).
    """
    key = rsa.generate_private_key(public_exponent=65537, key_size=bits)
    private_pem = key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.TraditionalOpenSSL,
        encryption_algorithm=serialization.NoEncryption(),
    )
    public_line = key.public_key().public_bytes(
        encoding=serialization.Encoding.OpenSSH,
        format=serialization.PublicFormat.OpenSSH,
    )
    return private_pem, public_line + b"\n"


def write_key_pair(key_path: Path, bits: int = SSH_KEY_BITS) -> str:
    """Generate a key pair and write it next to the machine's state.

    The private key is written to ``key_path`` with mode 0600 and the
    public key to ``key_path`` + ``.pub``. The parent directory is
    created with mode 0750 when missing.

    Args:
        key_path: Destination of the private key.
        bits: Modulus size.

    Returns:
        The public key as an authorized_keys line.
    """
    key_path = Path(key_path)
    if not key_path.parent.exists():
        key_path.parent.mkdir(mode=0o750, parents=True)

    private_pem, public_line = generate_key_pair(bits)

    fd = os.open(str(key_path), os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
    with os.fdopen(fd, "wb") as fh:
        fh.write(private_pem)
    os.chmod(key_path, 0o600)

    pub_path = key_path.with_name(key_path.name + ".pub")
    pub_path.write_bytes(public_line)

    logger.debug("Wrote SSH key pair to %s", key_path)
    return public_line.decode("ascii")
