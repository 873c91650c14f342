"""Tests for the in-sandbox route catalogue."""

import pytest

from chainlab.exceptions import InvalidCommand, UnknownRoute
from chainlab.models import CommandRequest
from chainlab.routes import (
    Route,
    build_path,
    parse_legacy_command,
    resolve_route,
    validate_command,
)


@pytest.mark.parametrize(
    "path, route, method",
    [
        ("/ping", Route.PING, "GET"),
        ("/execute", Route.EXECUTE, "POST"),
        ("/proxy/-1/consensus", Route.CONSENSUS_STATUS, "GET"),
        ("/proxy/-1/txpool", Route.TXPOOL_STATUS, "GET"),
        ("/setup/factory", Route.SETUP_FACTORY, "POST"),
        ("/setup/cluster/start", Route.CLUSTER_START, "POST"),
        ("/setup/build/chain", Route.BUILD_CHAIN, "POST"),
    ],
)
def test_resolve_static_routes(path: str, route: Route, method: str) -> None:
    resolved = resolve_route(path)
    assert resolved.route is route
    assert resolved.method == method
    assert resolved.params == {}


def test_resolve_parameterized_routes() -> None:
    resolved = resolve_route("/proxy/-1/blocks/height/42")
    assert resolved.route is Route.BLOCK_AT_HEIGHT
    assert resolved.params == {"height": 42}

    resolved = resolve_route("/workdir/3/genesis.json")
    assert resolved.route is Route.NODE_GENESIS
    assert resolved.params == {"node": 3}


@pytest.mark.parametrize(
    "path",
    [
        "/admin",
        "/ping/",
        "/ping?x=1",
        "/proxy/-1/blocks/height/-1",
        "/proxy/-1/blocks/height/abc",
        "/workdir/0/genesis-json",
        "",
    ],
)
def test_unknown_paths_are_rejected(path: str) -> None:
    with pytest.raises(UnknownRoute):
        resolve_route(path)


def test_build_path_renders_templates() -> None:
    assert build_path(Route.NODE_GENESIS, node=0) == "/workdir/0/genesis.json"
    assert build_path(Route.BLOCK_AT_HEIGHT, height=7) == "/proxy/-1/blocks/height/7"
    assert build_path(Route.PING) == "/ping"


@pytest.mark.parametrize(
    "route, params",
    [
        (Route.NODE_GENESIS, {}),
        (Route.NODE_GENESIS, {"node": -1}),
        (Route.NODE_GENESIS, {"node": 1, "extra": 2}),
        (Route.PING, {"node": 1}),
        (Route.BLOCK_AT_HEIGHT, {"height": True}),
    ],
)
def test_build_path_rejects_bad_params(route: Route, params) -> None:
    with pytest.raises(InvalidCommand):
        build_path(route, **params)


def test_validate_command_requires_payload_where_needed() -> None:
    with pytest.raises(InvalidCommand):
        validate_command(CommandRequest("/execute"))
    with pytest.raises(InvalidCommand):
        validate_command(CommandRequest("/setup/factory"))

    resolved = validate_command(CommandRequest("/execute", b"ls -la"))
    assert resolved.route is Route.EXECUTE


def test_validate_command_rejects_non_utf8_payload() -> None:
    with pytest.raises(InvalidCommand):
        validate_command(CommandRequest("/setup/addrs", b"\xff\xfe"))


def test_validate_command_rejects_unknown_route() -> None:
    with pytest.raises(UnknownRoute):
        validate_command(CommandRequest("/../../etc/passwd"))


def test_parse_legacy_command() -> None:
    assert parse_legacy_command(["mis", "/ping"]) == CommandRequest("/ping", b"")
    assert parse_legacy_command(["mis", "/setup/factory", '{"nodeCount":4}']) == CommandRequest(
        "/setup/factory", b'{"nodeCount":4}'
    )


@pytest.mark.parametrize(
    "cmd",
    [[], ["mis"], ["bash", "/ping"], ["mis", "/ping", "{}", "extra"]],
)
def test_parse_legacy_command_rejects_bad_arrays(cmd) -> None:
    with pytest.raises(InvalidCommand, match="Invalid Command"):
        parse_legacy_command(cmd)
