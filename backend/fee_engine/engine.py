"""Composition root for the delivery fee engine.

Builds each collaborator exactly once and wires them together; consumers
receive the container by reference instead of reaching for globals.
"""

import logging
import time
from dataclasses import dataclass
from typing import Callable, Optional

from fee_engine.config import Settings
from fee_engine.services import (
    DeliveryFeeCache,
    FeeCalculatorService,
    LocationPlatform,
    LocationProvider,
    LocationRequestCoordinator,
    StaticLocationPlatform,
    SupabaseFeeCalculatorService,
)

logger = logging.getLogger(__name__)


@dataclass
class FeeEngine:
    """The wired engine: settings, location stack and fee cache."""

    settings: Settings
    platform: LocationPlatform
    coordinator: LocationRequestCoordinator
    location: LocationProvider
    calculator: FeeCalculatorService
    fees: DeliveryFeeCache

    async def start(self) -> None:
        await self.location.check_location_status()
        self.fees.start()
        logger.info("[ENGINE] Started")

    async def close(self) -> None:
        await self.fees.close()
        await self.location.close()
        await self.calculator.close()
        logger.info("[ENGINE] Closed")


def build_engine(
    settings: Optional[Settings] = None,
    calculator: Optional[FeeCalculatorService] = None,
    platform: Optional[LocationPlatform] = None,
    clock: Callable[[], float] = time.time,
) -> FeeEngine:
    """Construct a FeeEngine, defaulting to Supabase pricing and a static platform."""
    settings = settings or Settings.from_env()
    platform = platform or StaticLocationPlatform()
    calculator = calculator or SupabaseFeeCalculatorService(
        base_url=settings.supabase_url,
        api_key=settings.supabase_key,
        timeout=settings.http_timeout_seconds,
    )
    coordinator = LocationRequestCoordinator(
        platform,
        freshness_seconds=settings.location_freshness_seconds,
        timeout_seconds=settings.location_timeout_seconds,
        clock=clock,
    )
    location = LocationProvider(platform, coordinator)
    fees = DeliveryFeeCache(calculator, settings=settings, location_source=location, clock=clock)
    return FeeEngine(
        settings=settings,
        platform=platform,
        coordinator=coordinator,
        location=location,
        calculator=calculator,
        fees=fees,
    )
