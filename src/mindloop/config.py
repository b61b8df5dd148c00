"""Central configuration for the mindloop cognitive core.

All tunables live here with sensible defaults.  Values can be overridden
through environment variables prefixed with ``MINDLOOP_`` (nested keys use
double underscores, e.g. ``MINDLOOP_FUSION__FUSION_THRESHOLD=0.7``).

Usage::

    from mindloop.config import get_config

    cfg = get_config()
    print(cfg.fusion.fusion_threshold)
    print(cfg.consolidation.max_insights)
"""

from __future__ import annotations

import os
import sys
from dataclasses import dataclass, field, fields
from typing import TypeVar, get_type_hints

T = TypeVar("T")

# ---------------------------------------------------------------------------
# Nested configuration sections
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class ReasoningConfig:
    """Parameters for trajectory generation and exploration."""

    exploration_bias: float = 0.3
    """Fraction of the original likelihood given up by every exploration
    variant before the random multiplier is applied."""

    exploration_step_decay: float = 0.8
    """Multiplier applied to each copied step's confidence in a variant."""

    exploration_multiplier_range: tuple[float, float] = (0.6, 0.9)
    """Bounds of the uniform draw applied to a variant's likelihood."""

    low_confidence_annotation: float = 0.7
    """Final responses below this consolidation confidence are annotated."""


@dataclass(frozen=True, slots=True)
class FusionConfig:
    """Parameters for fusion candidate generation, scoring and selection."""

    fusion_threshold: float = 0.6
    max_fusions_per_operation: int = 10
    novelty_weight: float = 0.3
    coherence_weight: float = 0.4
    importance_weight: float = 0.3
    cross_layer_group_limit: int = 5
    """Only the first N nodes of each layer group are paired across layers."""

    cross_layer_similarity: float = 0.4
    temporal_similarity: float = 0.5
    causal_threshold: float = 0.6
    conceptual_threshold: float = 0.5
    analogy_band: tuple[float, float] = (0.2, 0.8)
    """Open interval of content similarity that counts as an analogy."""

    similar_fusion_penalty: float = 0.1
    max_novelty_penalty: float = 0.3


@dataclass(frozen=True, slots=True)
class ConsolidationConfig:
    """Parameters for knowledge integration, insights and strengthening."""

    max_insights: int = 5
    insight_generation_enabled: bool = True
    strong_coherence: float = 0.7
    """Fusion nodes above this coherence are reported as strong connections."""

    strengthen_similarity: float = 0.5
    """Retrieved pairs above this content similarity get a bidirectional edge."""

    consolidation_increment: float = 0.1
    max_facts: int = 3
    max_concepts: int = 3
    max_experiences: int = 2
    max_fusion_insights: int = 2


@dataclass(frozen=True, slots=True)
class ControlLoopConfig:
    """Parameters for the four-stage control loop."""

    max_reasoning_depth: int = 5
    exploration_threshold: float = 0.6
    max_alternatives: int = 3
    max_policy_corrections: int = 2


# ---------------------------------------------------------------------------
# Top-level configuration
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class MindloopConfig:
    """Root configuration object for the cognitive core."""

    reasoning: ReasoningConfig = field(default_factory=ReasoningConfig)
    fusion: FusionConfig = field(default_factory=FusionConfig)
    consolidation: ConsolidationConfig = field(default_factory=ConsolidationConfig)
    control_loop: ControlLoopConfig = field(default_factory=ControlLoopConfig)


# ---------------------------------------------------------------------------
# Environment-variable loader
# ---------------------------------------------------------------------------

_ENV_PREFIX = "MINDLOOP_"
_NESTED_SEP = "__"


def _resolve_type_hints(dc_type: type) -> dict[str, type]:
    """Resolve stringified annotations back to real types.

    ``from __future__ import annotations`` turns all annotations into
    strings.  :func:`typing.get_type_hints` evaluates them in the correct
    module namespace so we get the actual :class:`type` objects.
    """
    module = sys.modules.get(dc_type.__module__, None)
    globalns = getattr(module, "__dict__", {}) if module else {}
    return get_type_hints(dc_type, globalns=globalns)


def _coerce(value: str, target_type: type[T]) -> T:
    """Cast an env-var string to the target field type.

    Pairs such as ``tuple[float, float]`` are written as ``"0.6,0.9"``.
    """
    if target_type is bool:
        return target_type(value.lower() in ("1", "true", "yes"))  # type: ignore[return-value]
    if getattr(target_type, "__origin__", None) is tuple:
        item_type = target_type.__args__[0]  # type: ignore[attr-defined]
        return tuple(item_type(part.strip()) for part in value.split(","))  # type: ignore[return-value]
    return target_type(value)  # type: ignore[call-arg]


def _load_dataclass(dc_type: type[T], prefix: str) -> T:
    """Recursively build a dataclass from env-var overrides + defaults."""
    hints = _resolve_type_hints(dc_type)
    kwargs: dict[str, object] = {}

    for f in fields(dc_type):  # type: ignore[arg-type]
        field_type = hints[f.name]
        nested_prefix = f"{prefix}{f.name}{_NESTED_SEP}".upper()

        if hasattr(field_type, "__dataclass_fields__"):
            kwargs[f.name] = _load_dataclass(field_type, nested_prefix)
        else:
            env_key = f"{prefix}{f.name}".upper()
            raw = os.environ.get(env_key)
            if raw is not None:
                kwargs[f.name] = _coerce(raw, field_type)

    return dc_type(**kwargs)  # type: ignore[return-value]


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

_cached_config: MindloopConfig | None = None


def get_config(*, reload: bool = False) -> MindloopConfig:
    """Return the current :class:`MindloopConfig`.

    On the first call the config is built by merging defaults with any
    ``MINDLOOP_*`` environment variables.  The result is cached for the
    lifetime of the process unless *reload* is ``True``.

    Parameters
    ----------
    reload:
        Force re-reading environment variables and rebuilding the config.
    """
    global _cached_config  # noqa: PLW0603
    if _cached_config is None or reload:
        _cached_config = _load_dataclass(MindloopConfig, _ENV_PREFIX)
    return _cached_config
