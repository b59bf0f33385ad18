"""Lifecycle of the temporary server (provision, reachability, destroy)."""

from __future__ import annotations

import socket
import time
from collections.abc import Callable
from contextlib import AbstractContextManager
from typing import Any

import requests
from hcloud import Client, HCloudException
from hcloud.images import Image
from hcloud.locations import Location
from hcloud.server_types import ServerType
from hcloud.servers import BoundServer
from hcloud.ssh_keys import BoundSSHKey
from loguru import logger
from tenacity import retry, retry_if_exception_type, stop_after_delay, wait_fixed

from hcutils.actions import ActionPoller
from hcutils.config import Settings
from hcutils.exceptions import (
    ActionFailed,
    ProvisionError,
    ReachabilityTimeout,
    TeardownError,
    TransportError,
)
from hcutils.naming import temp_server_name

type Connector = Callable[..., AbstractContextManager[Any]]

PROBE_TIMEOUT = 1.0


class _PortClosedError(Exception):
    """Port not accepting connections yet - retry."""


def public_ipv4(server: BoundServer) -> str:
    """Public IPv4 address of a server.

    Raises:
        ProvisionError: If the server has no public IPv4 address.
    """
    ipv4 = server.public_net.ipv4 if server.public_net else None
    if ipv4 is None or not ipv4.ip:
        raise ProvisionError(f"Server {server.name} has no public IPv4 address")
    return ipv4.ip


class InstanceProvisioner:
    """Creates, probes and deletes the temporary server.

    Dependencies are bound at construction. The connector used for the
    reachability probe defaults to socket.create_connection.
    """

    def __init__(
        self,
        client: Client,
        poller: ActionPoller,
        settings: Settings,
        connect: Connector = socket.create_connection,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._client = client
        self._poller = poller
        self._settings = settings
        self._connect = connect
        self._sleep = sleep

    def provision(self, location: str, ssh_key: BoundSSHKey) -> BoundServer:
        """Create a minimal server carrying the ephemeral key.

        The returned server may not be reachable yet; see wait_reachable.

        Raises:
            ProvisionError: If the API rejects the request.
        """
        name = temp_server_name()
        try:
            response = self._client.servers.create(
                name=name,
                server_type=ServerType(name=self._settings.server_type),
                image=Image(name=self._settings.image),
                ssh_keys=[ssh_key],
                location=Location(name=location),
                labels=dict(self._settings.labels),
            )
        except (HCloudException, requests.RequestException) as e:
            raise ProvisionError(f"Could not create server {name} in {location}: {e}") from e

        server = response.server
        logger.info(
            "Created server {name} ({id}) in {location}",
            name=name, id=server.id, location=location,
        )
        return server

    def wait_reachable(
        self,
        server: BoundServer,
        port: int | None = None,
        timeout: float | None = None,
        interval: float | None = None,
    ) -> None:
        """Block until the server accepts TCP connections on the SSH port.

        Server creation finishing says nothing about the guest having booted,
        so a successful connection is the readiness signal.

        Raises:
            ProvisionError: If the server has no public IPv4 address.
            ReachabilityTimeout: If no connection succeeds within timeout.
        """
        host = public_ipv4(server)
        port = self._settings.ssh_port if port is None else port
        timeout = self._settings.reachability_timeout if timeout is None else timeout
        interval = self._settings.poll_interval if interval is None else interval

        @retry(
            stop=stop_after_delay(timeout),
            wait=wait_fixed(interval),
            retry=retry_if_exception_type(_PortClosedError),
            sleep=self._sleep,
            reraise=True,
        )
        def _probe() -> None:
            try:
                with self._connect((host, port), timeout=PROBE_TIMEOUT):
                    return
            except OSError:
                raise _PortClosedError() from None

        logger.debug("Probing {host}:{port}", host=host, port=port)
        try:
            _probe()
        except _PortClosedError:
            raise ReachabilityTimeout(host, port, timeout) from None
        logger.info("Server {name} reachable at {host}:{port}", name=server.name, host=host, port=port)

    def destroy(self, server: BoundServer) -> None:
        """Delete the server and wait for the deletion to finish.

        Raises:
            TeardownError: If the deletion is rejected or its action fails.
        """
        logger.info("Deleting server {name} ({id})", name=server.name, id=server.id)
        try:
            action = self._client.servers.delete(server)
            self._poller.wait(action)
        except (HCloudException, requests.RequestException, ActionFailed, TransportError) as e:
            raise TeardownError(f"Could not delete server {server.name}: {e}") from e
