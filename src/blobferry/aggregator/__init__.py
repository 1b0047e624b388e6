"""
Swap aggregator clients.
"""

from blobferry.aggregator.astros_client import (
    DEFAULT_AGGREGATOR_URL,
    AstrosClient,
    AstrosConfig,
)

__all__ = [
    "AstrosClient",
    "AstrosConfig",
    "DEFAULT_AGGREGATOR_URL",
]
