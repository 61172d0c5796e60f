"""Application wiring: settings -> logging -> gateway -> coordinator."""

from __future__ import annotations

from mctracker.core.clock import Clock
from mctracker.core.config import AppSettings
from mctracker.core.logging import configure_logging
from mctracker.core.protocols import IManuscriptGateway
from mctracker.engine.coordinator import MutationCoordinator
from mctracker.persistence import create_gateway


async def create_tracker(
    settings: AppSettings | None = None,
    *,
    gateway: IManuscriptGateway | None = None,
    clock: Clock | None = None,
) -> MutationCoordinator:
    """Build a coordinator for the configured backend and load its data."""
    settings = settings or AppSettings()
    configure_logging(settings.log_level)
    coordinator = MutationCoordinator(
        gateway or create_gateway(settings),
        clock=clock,
        auto_remarks=settings.auto_remarks,
    )
    await coordinator.load()
    return coordinator
