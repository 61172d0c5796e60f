"""Re-export persistence protocols from core for convenience."""

from __future__ import annotations

from mctracker.core.protocols import IAsyncKeyValueClient, IManuscriptGateway

__all__ = ["IAsyncKeyValueClient", "IManuscriptGateway"]
