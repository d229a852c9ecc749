from __future__ import annotations

import os

import pytest
from pytest_socket import disable_socket, enable_socket, socket_allow_hosts

from dngSync.security import cred_store


@pytest.fixture(autouse=True)
def _disable_network(request: pytest.FixtureRequest):
    """Block outbound network access; unix sockets stay open for asyncio loops."""

    if os.getenv("PYTEST_ALLOW_NETWORK", "0") == "1":
        yield
        return

    socket_allow_hosts(["127.0.0.1", "::1"])
    if request.node.get_closest_marker("network"):
        enable_socket()
        yield
        return
    disable_socket(allow_unix_socket=True)
    try:
        yield
    finally:
        enable_socket()


@pytest.fixture(autouse=True)
def _no_keyring(monkeypatch: pytest.MonkeyPatch):
    """Keep credential lookups off the developer's real keyring."""

    monkeypatch.setattr(cred_store.keyring, "get_password", lambda service, name: None)
    for var in ("DNG_USER", "DNG_PASS", "MMS_USER", "MMS_PASS", "DNG_SERVER", "MMS_SERVER", "DNG_PROJECT"):
        monkeypatch.delenv(var, raising=False)
