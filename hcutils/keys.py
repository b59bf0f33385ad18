"""Ephemeral SSH credentials.

A fresh RSA key pair is generated in memory for every run and its public
half is registered with the provider so the temporary server boots with it
installed. The private key never touches the disk.
"""

from __future__ import annotations

from dataclasses import dataclass

import asyncssh
import requests
from hcloud import Client, HCloudException
from hcloud.ssh_keys import BoundSSHKey
from loguru import logger

from hcutils.config import Settings
from hcutils.exceptions import KeyGenError, RegistrationError, TeardownError
from hcutils.naming import temp_key_name

KEY_ALGORITHM = "ssh-rsa"
KEY_SIZE = 2048


@dataclass(frozen=True, slots=True)
class EphemeralKey:
    """In-memory key pair owned by one run."""

    private_key: asyncssh.SSHKey
    public_key: str


class CredentialManager:
    """Generates and (de)registers the per-run SSH key."""

    def __init__(self, client: Client, settings: Settings) -> None:
        self._client = client
        self._settings = settings

    def generate(self) -> EphemeralKey:
        try:
            private_key = asyncssh.generate_private_key(KEY_ALGORITHM, key_size=KEY_SIZE)
            public_key = private_key.export_public_key("openssh").decode().strip()
        except (asyncssh.KeyGenerationError, ValueError) as e:
            raise KeyGenError(f"Could not generate {KEY_ALGORITHM} key: {e}") from e
        return EphemeralKey(private_key=private_key, public_key=public_key)

    def register(self, key: EphemeralKey) -> BoundSSHKey:
        """Upload the public key under a unique, labelled name.

        Raises:
            RegistrationError: If the provider rejects the key.
        """
        name = temp_key_name()
        try:
            ssh_key = self._client.ssh_keys.create(
                name=name,
                public_key=key.public_key,
                labels=dict(self._settings.labels),
            )
        except (HCloudException, requests.RequestException) as e:
            raise RegistrationError(f"Could not register SSH key {name}: {e}") from e
        logger.info("Registered SSH key {name} ({id})", name=name, id=ssh_key.id)
        return ssh_key

    def unregister(self, ssh_key: BoundSSHKey) -> None:
        """Delete the provider-side key.

        Safe to call after the server using the key is gone. Deleting an
        already deleted key raises TeardownError rather than anything the
        teardown stack cannot aggregate.
        """
        logger.debug("Deleting SSH key {id}", id=ssh_key.id)
        try:
            self._client.ssh_keys.delete(ssh_key)
        except (HCloudException, requests.RequestException) as e:
            raise TeardownError(f"Could not delete SSH key {ssh_key.id}: {e}") from e
