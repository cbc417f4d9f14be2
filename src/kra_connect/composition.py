"""Composition root for wiring CLI dependencies."""

from __future__ import annotations

from .cli import create_app
from .client import KraClient
from .config import KraConfig
from .observability import set_debug


def build_client(*, config: KraConfig) -> KraClient:
    """Build the production client: requests transport plus in-process limiter and cache."""
    set_debug(config.debug)
    return KraClient.from_config(config)


app = create_app(build_client)
