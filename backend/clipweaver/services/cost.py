"""Submission-time cost estimates.

A pure function of the validated request. The result is stored once on the
job and never recomputed from a provider response.

Pricing models:
- Sora: per second, x1.5 for 1080p sizes
- Veo:  flat per second, audio-inclusive rate when audio is generated
- Kling: per second, by STD/PRO mode
"""

from __future__ import annotations

from clipweaver.errors import UnknownModel

# USD per second
SORA_RATES = {
    "sora-2": 0.10,
    "sora-2-pro": 0.20,
}
SORA_HD_MULTIPLIER = 1.5

# model: (with audio, without audio)
VEO_RATES = {
    "veo-3.1-generate-preview": (0.40, 0.20),
    "veo-3.1-fast-generate-preview": (0.15, 0.10),
    "veo-3-generate-preview": (0.40, 0.20),
    "veo-3-fast-generate-preview": (0.15, 0.10),
}

KLING_MODE_RATES = {
    "std": 0.05,
    "pro": 0.10,
}


def estimate_cost(
    model: str,
    duration: int,
    *,
    size: str | None = None,
    resolution: str | None = None,
    generate_audio: bool = True,
) -> float:
    """Estimated USD cost of one generation, rounded to cents."""
    if model in SORA_RATES:
        multiplier = SORA_HD_MULTIPLIER if _is_hd(size, resolution) else 1.0
        cost = duration * SORA_RATES[model] * multiplier
    elif model in VEO_RATES:
        with_audio, without_audio = VEO_RATES[model]
        cost = duration * (with_audio if generate_audio else without_audio)
    elif model.lower().startswith("kling-"):
        mode = "pro" if model.upper().endswith("(PRO)") else "std"
        cost = duration * KLING_MODE_RATES[mode]
    else:
        raise UnknownModel(f"No pricing for model: {model}")
    return round(cost, 2)


def _is_hd(size: str | None, resolution: str | None) -> bool:
    if size and ("1920" in size or "1080" in size):
        return True
    return resolution == "1080p"
