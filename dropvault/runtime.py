"""Runtime wiring for the DropVault core services."""

from __future__ import annotations

import time
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional

from .config import DropVaultConfig
from .messaging import InMemoryBus, build_bus
from .models import utcnow
from .services.activity_service import ActivityService
from .services.api_gateway import DropVaultGateway
from .services.record_store import InMemoryRecordStore, RecordStore
from .services.sharing_service import ShareIssuer
from .services.transfers import TransferDriver
from .services.upload_service import UploadCoordinator
from .telemetry import TelemetryCollector


@dataclass
class DropVaultRuntime:
    config: DropVaultConfig
    bus: InMemoryBus
    telemetry: TelemetryCollector
    record_store: RecordStore
    upload_service: UploadCoordinator
    sharing_service: ShareIssuer
    activity_service: ActivityService
    api_gateway: DropVaultGateway

    @classmethod
    def bootstrap(
        cls,
        config: Optional[DropVaultConfig] = None,
        *,
        record_store: Optional[RecordStore] = None,
        transfer: Optional[TransferDriver] = None,
        clock: Callable[[], datetime] = utcnow,
        sleep: Callable[[float], None] = time.sleep,
    ) -> "DropVaultRuntime":
        cfg = config or DropVaultConfig.default()
        bus = build_bus(cfg.message_bus.backend)
        telemetry = TelemetryCollector(cfg.observability)
        store = record_store or InMemoryRecordStore(state_path=cfg.observability.state_path)

        upload_service = UploadCoordinator(
            config=cfg,
            telemetry=telemetry,
            record_store=store,
            bus=bus,
            transfer=transfer,
            sleep=sleep,
        )
        sharing_service = ShareIssuer(
            config=cfg,
            telemetry=telemetry,
            record_store=store,
            bus=bus,
            clock=clock,
        )
        activity_service = ActivityService(
            bus=bus,
            telemetry=telemetry,
            max_events=cfg.observability.activity_feed_size,
            topics=cfg.message_bus.activity_topics,
        )
        api_gateway = DropVaultGateway(
            record_store=store,
            upload_service=upload_service,
            sharing_service=sharing_service,
            activity_service=activity_service,
            bus=bus,
        )
        return cls(
            config=cfg,
            bus=bus,
            telemetry=telemetry,
            record_store=store,
            upload_service=upload_service,
            sharing_service=sharing_service,
            activity_service=activity_service,
            api_gateway=api_gateway,
        )

    def shutdown(self) -> None:
        self.upload_service.shutdown()
        self.activity_service.close()
        self.telemetry.flush()
