"""Connectivity check against the Kibela API."""

import logging

from kibela import KibelaClient, KibelaResponse
from kibela.operations import HELLO_KIBELA_CLIENT

logger = logging.getLogger('kibela_migrator.migration.ping')


def ping(client: KibelaClient) -> KibelaResponse:
    """Ask the API who we are; raises on any client error."""
    logger.info(f"Requesting to {client.endpoint} ...")
    response = client.request(HELLO_KIBELA_CLIENT)
    account = (response.data.get('currentUser') or {}).get('account')
    logger.info(f"Authenticated as @{account} ({response.metadata.timings.get('total', 0)}ms)")
    return response
