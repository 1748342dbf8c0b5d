"""
Studio configuration - prices, polling policy, auto-save and narration
settings, collaborator endpoints and dev bearer identities.

Loaded from config/studio.yaml. Every key is optional; missing keys keep the
defaults below.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path

import yaml

from ..models.schemas import JobKind

logger = logging.getLogger(__name__)


DEFAULT_PRICES: dict[JobKind, int] = {
    JobKind.GENERATE: 10,
    JobKind.REMOVE_BACKGROUND: 5,
    JobKind.UPSCALE: 5,
    JobKind.REIMAGINE: 10,
}


@dataclass
class GenerationSettings:
    images_per_request: int = 2
    poll_interval: float = 2.0
    max_poll_attempts: int = 60
    default_product_type: str = "shirts"
    upscale_factor: int = 2


@dataclass
class NarrationSettings:
    speed: float = 0.95
    emotion: str = "auto"
    playback_timeout: float = 30.0


@dataclass
class CollaboratorSettings:
    generation_url: str = "http://127.0.0.1:8100"
    voice_url: str = "http://127.0.0.1:8200"
    records_url: str = "http://127.0.0.1:8001"


@dataclass
class StudioConfig:
    prices: dict[JobKind, int] = field(default_factory=lambda: dict(DEFAULT_PRICES))
    generation: GenerationSettings = field(default_factory=GenerationSettings)
    narration: NarrationSettings = field(default_factory=NarrationSettings)
    autosave_debounce: float = 2.0
    collaborators: CollaboratorSettings = field(default_factory=CollaboratorSettings)
    database_url: str = "sqlite+aiosqlite:///./data/studio.db"
    # bearer token -> owner id, for the records service in local setups
    identities: dict[str, str] = field(default_factory=dict)

    def price_of(self, kind: JobKind) -> int:
        return self.prices.get(kind, DEFAULT_PRICES[kind])

    @classmethod
    def load_from_yaml(cls, path: str | Path) -> "StudioConfig":
        """Parse studio.yaml into a StudioConfig."""
        path = Path(path)
        config = cls()
        if not path.exists():
            logger.warning("Studio config not found at %s, using defaults", path)
            return config

        with open(path) as f:
            data = yaml.safe_load(f) or {}

        for key, cost in (data.get("pricing") or {}).items():
            config.prices[JobKind(key)] = int(cost)

        gen = data.get("generation") or {}
        config.generation = GenerationSettings(
            images_per_request=int(gen.get("images_per_request", 2)),
            poll_interval=float(gen.get("poll_interval_s", 2.0)),
            max_poll_attempts=int(gen.get("max_poll_attempts", 60)),
            default_product_type=gen.get("default_product_type", "shirts"),
            upscale_factor=int(gen.get("upscale_factor", 2)),
        )

        narr = data.get("narration") or {}
        config.narration = NarrationSettings(
            speed=float(narr.get("speed", 0.95)),
            emotion=narr.get("emotion", "auto"),
            playback_timeout=float(narr.get("playback_timeout_s", 30.0)),
        )

        config.autosave_debounce = float(
            (data.get("autosave") or {}).get("debounce_s", 2.0)
        )

        collab = data.get("collaborators") or {}
        defaults = CollaboratorSettings()
        config.collaborators = CollaboratorSettings(
            generation_url=collab.get("generation_url", defaults.generation_url),
            voice_url=collab.get("voice_url", defaults.voice_url),
            records_url=collab.get("records_url", defaults.records_url),
        )

        config.database_url = data.get("database_url", config.database_url)
        config.identities = {
            str(token): str(owner)
            for token, owner in (data.get("identities") or {}).items()
        }

        logger.info(
            "Loaded studio config from %s (%d prices, %d identities)",
            path, len(config.prices), len(config.identities),
        )
        return config
