"""Host port allocation for containers."""

import re

from .config import PORT_FLOOR
from .remote import RemoteSession

# Host side of a docker port binding, e.g. "0.0.0.0:3000->3000/tcp".
HOST_PORT_RE = re.compile(r":(\d+)->")

DOCKER_PS_PORTS = "docker ps --format '{{.Ports}}'"


def parse_host_ports(text: str) -> list[int]:
    """:return: Distinct host ports found in ``docker ps`` output, ascending"""
    return sorted({int(m) for m in HOST_PORT_RE.findall(text)})


def used_ports(session: RemoteSession) -> list[int]:
    return parse_host_ports(session.output(DOCKER_PS_PORTS))


def get_used_ports(ip: str, private_key: str) -> list[int]:
    """Connect to a host as peon and list the host ports bound by containers."""
    with RemoteSession(ip, private_key) as session:
        return used_ports(session)


def suggest_port(used: list[int], floor: int = PORT_FLOOR) -> int:
    """:return: Lowest port >= ``floor`` not present in ``used``"""
    taken = set(used)
    port = floor
    while port in taken:
        port += 1
    return port
