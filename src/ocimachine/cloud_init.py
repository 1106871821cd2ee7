"""Startup script handed to new nodes as ``user_data`` metadata."""

from __future__ import annotations

import base64

DOCKER_INSTALL_URL = "https://releases.rancher.com/install-docker/18.09.9.sh"
SELINUX_POLICY_RPM = (
    "http://mirror.centos.org/centos/7/extras/x86_64/Packages/"
    "container-selinux-2.99-1.el7_6.noarch.rpm"
)


def build_startup_script(ssh_user: str = "opc") -> str:
    """Generate the shell script that prepares a node for Docker.

    Opens the OS firewall, relaxes SELinux, installs Docker, gives the
    SSH user access to the docker socket and raises the mmap limit
    Elasticsearch needs.

    Args:
        ssh_user: Account added to the docker group.

    Returns:
        Script text.
    """
    lines = [
        "#!/bin/sh",
        "#echo \"Disabling OS firewall...\"",
        "sudo /usr/sbin/ethtool --offload $(/usr/sbin/ip -o -4 route show to default | awk '{print $5}') tx off",
        "sudo iptables -F",
        "",
        "# Update to selinux that fixes write permission error",
        f"sudo yum install -y {SELINUX_POLICY_RPM}",
        "sudo setenforce 0",
        "sudo systemctl stop firewalld.service",
        "sudo systemctl disable firewalld.service",
        "",
        "echo \"Installing Docker...\"",
        f"curl {DOCKER_INSTALL_URL} | sh",
        f"sudo usermod -aG docker {ssh_user}",
        "sudo systemctl enable docker",
        "",
        "# Elasticsearch requirement",
        "sudo sysctl -w vm.max_map_count=262144",
    ]
    return "\n".join(lines)


def encode_user_data(script: str) -> str:
    """Base64-encode a script for the ``user_data`` metadata key."""
    return base64.b64encode(script.encode("utf-8")).decode("ascii")
