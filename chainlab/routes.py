"""
Catalogue of control-plane endpoints served inside a sandbox.

Commands are validated against this closed set before anything reaches the
Command Bridge, so an unknown path is rejected on the host instead of being
forwarded into the container.

Usage:
    from chainlab.routes import Route, build_path, resolve_route

    resolved = resolve_route("/proxy/-1/blocks/height/12")
    resolved.route   # Route.BLOCK_AT_HEIGHT
    resolved.method  # "GET"

    build_path(Route.NODE_GENESIS, node=0)  # "/workdir/0/genesis.json"
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Optional, Pattern, Sequence

from chainlab.exceptions import InvalidCommand, UnknownRoute
from chainlab.models import CommandRequest


class Route(str, Enum):
    """In-sandbox endpoints. Values are path templates."""

    PING = "/ping"
    EXECUTE = "/execute"
    CONSENSUS_STATUS = "/proxy/-1/consensus"
    TXPOOL_STATUS = "/proxy/-1/txpool"
    BLOCK_AT_HEIGHT = "/proxy/-1/blocks/height/{height}"
    SETUP_FACTORY = "/setup/factory"
    SETUP_ADDRESSES = "/setup/addrs"
    SETUP_VALIDATOR_KEYS = "/setup/random"
    SETUP_GENESIS = "/setup/template"
    CLUSTER_CREATE = "/setup/cluster/create"
    BUILD_CHAIN = "/setup/build/chain"
    CLUSTER_START = "/setup/cluster/start"
    CLUSTER_STOP = "/setup/cluster/stop"
    NODE_GENESIS = "/workdir/{node}/genesis.json"

    @property
    def method(self) -> str:
        return _METHODS[self]

    @property
    def requires_payload(self) -> bool:
        return self in _PAYLOAD_REQUIRED


_METHODS: Dict[Route, str] = {
    Route.PING: "GET",
    Route.EXECUTE: "POST",
    Route.CONSENSUS_STATUS: "GET",
    Route.TXPOOL_STATUS: "GET",
    Route.BLOCK_AT_HEIGHT: "GET",
    Route.SETUP_FACTORY: "POST",
    Route.SETUP_ADDRESSES: "POST",
    Route.SETUP_VALIDATOR_KEYS: "POST",
    Route.SETUP_GENESIS: "POST",
    Route.CLUSTER_CREATE: "POST",
    Route.BUILD_CHAIN: "POST",
    Route.CLUSTER_START: "POST",
    Route.CLUSTER_STOP: "POST",
    Route.NODE_GENESIS: "GET",
}

_PAYLOAD_REQUIRED = frozenset({Route.EXECUTE, Route.SETUP_FACTORY})

# Only non-negative integer placeholders exist in the catalogue.
_PLACEHOLDER = re.compile(r"\{(\w+)\}")

# Tag the legacy teaching client prefixes its command arrays with.
LEGACY_COMMAND_TAG = "mis"


def _compile(template: str) -> Pattern[str]:
    parts: List[str] = []
    last = 0
    for match in _PLACEHOLDER.finditer(template):
        parts.append(re.escape(template[last:match.start()]))
        parts.append(rf"(?P<{match.group(1)}>\d+)")
        last = match.end()
    parts.append(re.escape(template[last:]))
    return re.compile("^" + "".join(parts) + "$")


_PATTERNS: Dict[Route, Pattern[str]] = {route: _compile(route.value) for route in Route}


@dataclass(frozen=True)
class ResolvedRoute:
    """A concrete path matched to its catalogue entry."""

    route: Route
    path: str
    params: Dict[str, int]

    @property
    def method(self) -> str:
        return self.route.method


def resolve_route(path: str) -> ResolvedRoute:
    """
    Match a concrete request path against the catalogue.

    Query strings are not part of any endpoint and are rejected.

    Raises:
        UnknownRoute: If no catalogue entry matches.
    """
    for route, pattern in _PATTERNS.items():
        match = pattern.match(path)
        if match:
            params = {name: int(value) for name, value in match.groupdict().items()}
            return ResolvedRoute(route=route, path=path, params=params)
    raise UnknownRoute(f"Unknown sandbox route: {path}", details={"route": path})


def build_path(route: Route, **params: int) -> str:
    """
    Render a route template.

    Raises:
        InvalidCommand: On missing, extra or negative parameters.
    """
    expected = set(_PLACEHOLDER.findall(route.value))
    if set(params) != expected:
        raise InvalidCommand(
            f"Route {route.name} takes parameters {sorted(expected)}, got {sorted(params)}"
        )
    for name, value in params.items():
        if not isinstance(value, int) or isinstance(value, bool) or value < 0:
            raise InvalidCommand(f"Parameter {name} must be a non-negative integer")
    return route.value.format(**params)


def validate_command(command: CommandRequest) -> ResolvedRoute:
    """
    Resolve a command's route and check its payload against the route.

    Raises:
        UnknownRoute: If the route is outside the catalogue.
        InvalidCommand: If a required payload is missing or not UTF-8.
    """
    resolved = resolve_route(command.route)
    if resolved.route.requires_payload and not command.payload:
        raise InvalidCommand(f"Route {resolved.route.name} requires a payload")
    try:
        command.payload.decode("utf-8")
    except UnicodeDecodeError:
        raise InvalidCommand("Command payload must be UTF-8 text")
    return resolved


def parse_legacy_command(cmd: Sequence[str]) -> CommandRequest:
    """
    Convert the tagged command array sent by legacy clients.

    Format: ["mis", "<path>"] or ["mis", "<path>", "<body>"].

    Raises:
        InvalidCommand: If the tag or arity is wrong.
    """
    if len(cmd) < 2 or len(cmd) > 3 or cmd[0] != LEGACY_COMMAND_TAG:
        raise InvalidCommand("Invalid Command", details={"cmd": list(cmd)[:3]})
    body: Optional[str] = cmd[2] if len(cmd) == 3 else None
    return CommandRequest(route=cmd[1], payload=(body or "").encode("utf-8"))


__all__ = [
    "Route",
    "ResolvedRoute",
    "resolve_route",
    "build_path",
    "validate_command",
    "parse_legacy_command",
    "LEGACY_COMMAND_TAG",
]
