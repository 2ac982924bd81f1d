"""Shared studio constants — single source of truth.

Centralises the polling cadence, history limits, storage defaults, and
model display labels that would otherwise be duplicated across the
orchestrators, activities, and storage adapters.

The polling constants are fixed (not configurable) so that the wall
clock behaviour of a video generation stays identical across
deployments: an initial 6 s interval growing by 1.2x per attempt up to
60 s, with +/-10 % jitter, capped at 30 status checks.
"""

from __future__ import annotations

# ---------------------------------------------------------------------------
# Long-running operation polling
# ---------------------------------------------------------------------------

INITIAL_POLL_INTERVAL_MS: float = 6000
"""Interval (ms) used to schedule the first status check."""

MAX_POLL_INTERVAL_MS: float = 60000
"""Upper bound (ms) for the backoff interval."""

BACKOFF_FACTOR: float = 1.2
"""Multiplicative growth of the interval after each scheduled poll."""

JITTER_FACTOR: float = 0.2
"""Jitter amplitude as a fraction of the current interval (+/- half of it)."""

MAX_POLL_ATTEMPTS: int = 30
"""Hard ceiling on status checks per operation before timing out."""

# ---------------------------------------------------------------------------
# History
# ---------------------------------------------------------------------------

DEFAULT_HISTORY_LIMIT: int = 30
"""Number of most recent history records returned by a load."""

DEFAULT_HISTORY_DIR: str = "~/.imgstudio/history"
"""Local history root; each record lives in ``<id>/metadata.json``."""

HISTORY_RECORD_FILENAME: str = "metadata.json"

# ---------------------------------------------------------------------------
# Blob storage
# ---------------------------------------------------------------------------

DEFAULT_OUTPUT_CONTAINER: str = "generated-media"
"""Default blob container for generated artifacts and their sidecars."""

DEFAULT_HISTORY_CONTAINER: str = "generation-history"
"""Default blob container for history records (``blob`` history backend)."""

# ---------------------------------------------------------------------------
# Cost estimation
# ---------------------------------------------------------------------------

COST_CURRENCY: str = "USD"
COST_PER_1K_TOKENS: float = 0.002
"""Fallback price used when the backend reports tokens but no cost."""

# ---------------------------------------------------------------------------
# Model display labels
# ---------------------------------------------------------------------------

MODEL_LABELS: dict[str, str] = {
    "imagen-4.0-generate-001": "Imagen 4",
    "imagen-4.0-ultra-generate-001": "Imagen 4 Ultra",
    "imagen-4.0-fast-generate-001": "Imagen 4 Fast",
    "gemini-2.5-flash-image": "Gemini 2.5 Flash Image",
    "gemini-3-pro-image-preview": "Gemini 3 Pro Image",
    "veo-3.1-generate-preview": "Veo 3.1",
    "veo-3.1-fast-generate-preview": "Veo 3.1 Fast",
    "veo-3.0-generate-001": "Veo 3",
    "veo-2.0-generate-001": "Veo 2",
}
"""Model id to human label, used when rewriting model-not-found errors."""
