"""
Node Value Object

Architectural Intent:
- Immutable value object for one target machine of a deployment plan
- The node id (the host) is the key used in persisted state and barrier decisions
- Validates host (DNS, IPv4, IPv6), port bounds and a non-empty user
- parse() accepts 'user@host:port', 'host' and IPv6 bracket notation 'user@[::1]:22'
"""

import re
from dataclasses import dataclass

_HOSTNAME_RE = re.compile(
    r"^(?!-)[A-Za-z0-9-]{1,63}(?<!-)(\.[A-Za-z0-9-]{1,63})*$"
)
_IPV4_RE = re.compile(r"^(\d{1,3})\.(\d{1,3})\.(\d{1,3})\.(\d{1,3})$")
_IPV6_RE = re.compile(r"^[0-9a-fA-F:]+$")


def _is_valid_host(host: str) -> bool:
    if not host:
        return False

    m = _IPV4_RE.match(host)
    if m:
        return all(0 <= int(g) <= 255 for g in m.groups())

    if ":" in host and _IPV6_RE.match(host):
        return True

    return bool(_HOSTNAME_RE.match(host)) and len(host) <= 253


@dataclass(frozen=True)
class Node:
    host: str
    user: str = "root"
    port: int = 22

    def __post_init__(self) -> None:
        if not self.user:
            raise ValueError("Node user cannot be empty")
        if not (1 <= self.port <= 65535):
            raise ValueError(f"Port must be 1-65535, got {self.port}")
        if not _is_valid_host(self.host):
            raise ValueError(f"Invalid node host: {self.host!r}")

    @property
    def node_id(self) -> str:
        return self.host

    def __str__(self) -> str:
        return f"{self.user}@{self.host}:{self.port}"

    @staticmethod
    def parse(target: str, default_user: str = "root") -> "Node":
        """Parse a target string such as 'deploy@node1:2222' into a Node."""
        user = default_user
        port = 22
        host = target.strip()

        if "@" in host:
            user, host = host.split("@", 1)

        if host.startswith("["):
            end = host.find("]")
            if end == -1:
                raise ValueError(f"Unterminated IPv6 bracket in: {target}")
            rest = host[end + 1:]
            host = host[1:end]
            if rest.startswith(":"):
                port = int(rest[1:])
        elif host.count(":") == 1:
            host, _, port_str = host.partition(":")
            port = int(port_str)

        return Node(host=host, user=user, port=port)

    @staticmethod
    def parse_many(targets: str | list[str], default_user: str = "root") -> list["Node"]:
        """Parse a comma-separated string (or list) of targets, rejecting duplicate hosts."""
        if isinstance(targets, str):
            targets = [t for t in targets.split(",") if t.strip()]
        nodes = [Node.parse(t, default_user) for t in targets]
        seen: set[str] = set()
        for node in nodes:
            if node.node_id in seen:
                raise ValueError(f"Duplicate node in target list: {node.node_id}")
            seen.add(node.node_id)
        return nodes
