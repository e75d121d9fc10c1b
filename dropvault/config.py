"""Configuration primitives for the DropVault core."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Mapping, Optional

TRANSFER_MODES = ("simulated", "external")


@dataclass
class UploadConfig:
    transfer_mode: str = "simulated"
    tick_interval_seconds: float = 0.3
    max_tick_percent: float = 10.0
    persist_max_attempts: int = 4
    persist_backoff_seconds: float = 0.25
    persist_backoff_multiplier: float = 2.0
    persist_backoff_max_seconds: float = 5.0
    finalize_workers: int = 4
    retain_terminal: int = 256


@dataclass
class SharingConfig:
    link_base_url: str = "https://dropvault.example.com/share"
    token_bytes: int = 24
    max_token_attempts: int = 5
    password_hash_iterations: int = 120_000
    password_salt_bytes: int = 16


@dataclass
class MessageBusConfig:
    backend: str = "in-memory"
    activity_topics: List[str] = field(default_factory=lambda: [
        "uploads.status",
        "shares.issued",
        "shares.revoked",
        "files.updated",
    ])


@dataclass
class ObservabilityConfig:
    log_level: str = "INFO"
    activity_feed_size: int = 200
    state_path: Optional[str] = None


@dataclass
class DropVaultConfig:
    uploads: UploadConfig
    sharing: SharingConfig
    message_bus: MessageBusConfig
    observability: ObservabilityConfig

    @staticmethod
    def default() -> "DropVaultConfig":
        return DropVaultConfig(
            uploads=UploadConfig(),
            sharing=SharingConfig(),
            message_bus=MessageBusConfig(),
            observability=ObservabilityConfig(),
        )

    @staticmethod
    def from_env(environ: Optional[Mapping[str, str]] = None) -> "DropVaultConfig":
        """Build the default config, then apply ``DROPVAULT_*`` overrides."""
        env = os.environ if environ is None else environ
        cfg = DropVaultConfig.default()
        state_path = env.get("DROPVAULT_STATE_PATH")
        if state_path:
            cfg.observability.state_path = str(Path(state_path).expanduser())
        log_level = env.get("DROPVAULT_LOG_LEVEL")
        if log_level:
            cfg.observability.log_level = log_level.upper()
        mode = env.get("DROPVAULT_TRANSFER_MODE")
        if mode:
            mode = mode.strip().lower()
            if mode not in TRANSFER_MODES:
                raise ValueError(f"Unsupported DROPVAULT_TRANSFER_MODE: {mode}")
            cfg.uploads.transfer_mode = mode
        base_url = env.get("DROPVAULT_LINK_BASE_URL")
        if base_url:
            cfg.sharing.link_base_url = base_url.rstrip("/")
        return cfg
