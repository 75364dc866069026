"""Credit pricing and generation route vocabulary."""

from __future__ import annotations

from enum import Enum
from typing import Any, Dict, List, Optional, Tuple


class Service(str, Enum):
    SORA = "SORA"
    VEO3 = "VEO 3"


class VideoType(str, Enum):
    TEXT_TO_VIDEO = "text-to-video"
    IMAGE_TO_VIDEO = "image-to-video"


class Tier(str, Enum):
    STANDARD = "standard"
    PRO = "pro"


DEFAULT_COST_CREDITS = 5

CREDIT_COSTS: Dict[Tuple[Service, Tier], int] = {
    (Service.SORA, Tier.STANDARD): 5,
    (Service.SORA, Tier.PRO): 20,
    (Service.VEO3, Tier.STANDARD): 5,
    (Service.VEO3, Tier.PRO): 20,
}

# Hosted-checkout packages: price in cents, credits granted.
CREDIT_PACKAGES: List[Dict[str, int]] = [
    {"amount_cents": 500, "credits": 5},
    {"amount_cents": 970, "credits": 10},
    {"amount_cents": 1800, "credits": 20},
    {"amount_cents": 4000, "credits": 50},
]


def _normalize(value: Any) -> str:
    return " ".join(str(value or "").strip().upper().replace("_", " ").replace("-", " ").split())


def parse_service(value: Any) -> Optional[Service]:
    """Map free-form service labels ("sora", "VEO 3", "veo3") to a Service."""
    token = _normalize(value).replace(" ", "")
    if not token:
        return Service.SORA
    if token.startswith("SORA"):
        return Service.SORA
    if token.startswith("VEO"):
        return Service.VEO3
    return None


def parse_tier(model: Any) -> Tier:
    """'SORA 2 Pro' -> PRO; anything else is the standard tier."""
    words = _normalize(model).split(" ")
    return Tier.PRO if "PRO" in words else Tier.STANDARD


def parse_video_type(value: Any) -> Optional[VideoType]:
    token = str(value or "").strip().lower()
    if not token:
        return VideoType.TEXT_TO_VIDEO
    for video_type in VideoType:
        if token == video_type.value:
            return video_type
    return None


def credit_cost(model: Any, service: Any) -> int:
    """Credits charged for one generation. Total: unknown input gets the default price."""
    parsed_service = parse_service(service)
    if parsed_service is None:
        return DEFAULT_COST_CREDITS
    return CREDIT_COSTS.get((parsed_service, parse_tier(model)), DEFAULT_COST_CREDITS)


def price_list() -> Dict[str, Dict[str, int]]:
    prices: Dict[str, Dict[str, int]] = {}
    for (service, tier), cost in CREDIT_COSTS.items():
        prices.setdefault(service.value, {})[tier.value] = cost
    return prices
