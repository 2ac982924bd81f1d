"""Backend factory — selects the active generation backend by name.

The factory maintains a registry of known adapters. New adapters are
registered by adding an entry to ``_ADAPTER_REGISTRY``.

Usage::

    from gen_studio.providers.factory import get_backend

    backend = get_backend("vertex_ai", config, artifact_store=store)
    result = await backend.submit_generation(request)

The backend name is read from the ``GENERATION_BACKEND`` environment
variable via ``StudioConfig.generation_backend``.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from gen_studio.models.generation import BackendConfig
from gen_studio.providers.base import GenerationBackend, ProviderError

if TYPE_CHECKING:
    from collections.abc import Callable

    from gen_studio.core.config import StudioConfig

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Backend name constants
# ---------------------------------------------------------------------------

VERTEX_AI = "vertex_ai"

# ---------------------------------------------------------------------------
# Lazy-import adapter registry
# ---------------------------------------------------------------------------

# Each entry maps a backend name to a callable that returns the adapter
# *class*, so adapter dependencies are only imported when selected.

_ADAPTER_REGISTRY: dict[str, Callable[[], type[GenerationBackend]]] = {}


def _register_builtin_adapters() -> None:
    """Register the built-in backend adapters."""

    def _vertex_ai() -> type[GenerationBackend]:
        from gen_studio.providers.vertex_ai import VertexAIBackend

        return VertexAIBackend

    _ADAPTER_REGISTRY[VERTEX_AI] = _vertex_ai


def _ensure_registry() -> None:
    """Initialise the adapter registry once (idempotent)."""
    if not _ADAPTER_REGISTRY:
        _register_builtin_adapters()


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def register_backend(
    name: str,
    loader: Callable[[], type[GenerationBackend]],
) -> None:
    """Register a custom backend adapter.

    Raises:
        ValueError: If the name is empty.
    """
    if not name:
        msg = "Backend name must be non-empty"
        raise ValueError(msg)
    _ensure_registry()
    _ADAPTER_REGISTRY[name] = loader
    logger.debug("Registered backend adapter: %s", name)


def get_backend(
    name: str,
    config: BackendConfig | None = None,
    **dependencies: Any,
) -> GenerationBackend:
    """Create and return a generation backend instance.

    Args:
        name: Backend identifier (e.g. ``"vertex_ai"``).
        config: Optional ``BackendConfig``. If ``None``, a default config
                with just the backend name is used.
        **dependencies: Extra keyword arguments for the adapter
                constructor (e.g. ``artifact_store``).

    Raises:
        ProviderError: If the named backend is not registered.
    """
    _ensure_registry()

    loader = _ADAPTER_REGISTRY.get(name)
    if loader is None:
        available = ", ".join(sorted(_ADAPTER_REGISTRY))
        msg = f"Unknown generation backend: {name!r}. Available: {available}"
        raise ProviderError(provider=name, message=msg)

    adapter_cls = loader()

    if config is None:
        config = BackendConfig(name=name)
    elif config.name != name:
        msg = f"BackendConfig.name {config.name!r} does not match requested backend {name!r}"
        raise ProviderError(provider=name, message=msg)

    logger.info("Creating generation backend: %s", name)
    return adapter_cls(config, **dependencies)


def list_backends() -> list[str]:
    """Return the names of all registered backend adapters."""
    _ensure_registry()
    return sorted(_ADAPTER_REGISTRY)


def backend_config_from(config: StudioConfig) -> BackendConfig:
    """Derive the ``BackendConfig`` for the configured backend."""
    return BackendConfig(
        name=config.generation_backend,
        project_id=config.gcp_project_id,
        location=config.gcp_location,
        access_token=config.vertex_access_token,
        output_container=config.output_container,
        timeout_s=config.http_timeout_s,
    )
