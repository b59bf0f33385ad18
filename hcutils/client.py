"""Hetzner Cloud API client wrapper using the hcloud SDK."""

from __future__ import annotations

from hcloud import Client

from hcutils import __version__
from hcutils.config import Settings


def get_client(settings: Settings) -> Client:
    """Create authenticated hcloud client.

    Args:
        settings: Run settings carrying the API token.

    Returns:
        Authenticated hcloud Client instance.

    Raises:
        ConfigurationError: If no token is configured.
    """
    return Client(
        token=settings.require_token(),
        application_name="hcutils",
        application_version=__version__,
    )
