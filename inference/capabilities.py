from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any, Dict, Optional

from loguru import logger


@dataclass(frozen=True)
class Capabilities:
    """Optional features available to this process, detected once at startup."""

    rest_configured: bool = False
    hybrid_enabled: bool = False
    on_device_available: bool = False
    offline_heuristics: bool = True
    integrations_available: bool = False

    @classmethod
    async def detect(cls, config: Dict[str, Any], runtime: Optional[Any] = None,
                     integrations: Optional[Any] = None) -> "Capabilities":
        inference = config.get("inference", {})
        on_device = False
        if runtime is not None:
            try:
                on_device = await runtime.available()
            except Exception:
                logger.exception("Probing the local runtime failed")
        caps = cls(
            rest_configured=bool(inference.get("rest", {}).get("api_key")),
            hybrid_enabled=bool(inference.get("hybrid", {}).get("enabled", False)) and on_device,
            on_device_available=on_device,
            offline_heuristics=bool(inference.get("offline_heuristics", True)),
            integrations_available=integrations is not None,
        )
        logger.info(f"Capabilities: {caps.to_dict()}")
        return caps

    def to_dict(self) -> Dict[str, bool]:
        return asdict(self)
