"""Model comparison from a single gold-standard NER call.

Only one real inference call is made. The remaining "models" are synthetic
variants of that result: each entity is independently dropped with the
variant's drop rate, and survivors get uniform confidence noise. The random
source is injectable so comparisons are reproducible.
"""

import logging
import random
from collections.abc import Sequence
from dataclasses import dataclass

from clinical_nlp.inference.client import InferenceClient
from clinical_nlp.inference.tasks import DEFAULT_NER_MODEL, DEFAULT_THRESHOLD, aperform_ner
from clinical_nlp.models import AnalysisResult, ComparisonResult, Entity, ModelVariant, Recommendation

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class VariantSpec:
    """How a synthetic model deviates from the gold standard."""

    name: str
    drop_rate: float = 0.0
    noise_level: float = 0.0


DEFAULT_VARIANTS: tuple[VariantSpec, ...] = (
    VariantSpec("BioBERT"),  # the real result
    VariantSpec("ClinicalBERT", drop_rate=0.1, noise_level=0.05),
    VariantSpec("PubMedBERT", drop_rate=0.05, noise_level=0.1),
)


class ComparisonSimulator:
    """Derive labeled variant results from one gold-standard AnalysisResult.

    The first variant always carries the gold-standard entities unmodified,
    whatever its drop/noise settings.

    Args:
        variants: Variant specs, gold standard first
        seed: Seed for a private ``random.Random``
        rng: Explicit random source (takes precedence over ``seed``)
    """

    def __init__(
        self,
        variants: Sequence[VariantSpec] = DEFAULT_VARIANTS,
        seed: int | None = None,
        rng: random.Random | None = None,
    ):
        if not variants:
            raise ValueError("At least one variant is required")
        for spec in variants:
            if not 0.0 <= spec.drop_rate <= 1.0:
                raise ValueError(f"drop_rate for {spec.name} must be in [0, 1], got {spec.drop_rate}")
            if spec.noise_level < 0:
                raise ValueError(f"noise_level for {spec.name} must be >= 0, got {spec.noise_level}")
        self.variants = tuple(variants)
        self.rng = rng or random.Random(seed)

    def vary(self, entities: Sequence[Entity], spec: VariantSpec) -> list[Entity]:
        varied = []
        for entity in entities:
            if self.rng.random() < spec.drop_rate:
                continue
            noise = (self.rng.random() - 0.5) * spec.noise_level
            confidence = max(0.0, min(1.0, entity.confidence + noise))
            varied.append(entity.model_copy(update={"confidence": confidence}))
        return varied

    def simulate(self, gold: AnalysisResult) -> ComparisonResult:
        models = [ModelVariant(model=self.variants[0].name, entities=list(gold.entities))]
        for spec in self.variants[1:]:
            models.append(ModelVariant(model=spec.name, entities=self.vary(gold.entities, spec)))

        best = models[0]
        for candidate in models[1:]:
            # strict > keeps the earliest variant on ties
            if candidate.entity_count * candidate.avg_confidence > best.entity_count * best.avg_confidence:
                best = candidate

        reason = (
            f"Best performance with {best.entity_count} entities and "
            f"{best.avg_confidence * 100:.1f}% confidence."
        )
        logger.debug(f"Comparison recommends {best.model}: {reason}")
        return ComparisonResult(models=models, recommendation=Recommendation(model=best.model, reason=reason))


async def acompare(
    client: InferenceClient,
    text: str,
    simulator: ComparisonSimulator | None = None,
    model_id: str = DEFAULT_NER_MODEL,
    threshold: float = DEFAULT_THRESHOLD,
) -> ComparisonResult:
    """One real NER call, then synthetic variants of its result."""
    gold = await aperform_ner(client, text, model_id, threshold)
    return (simulator or ComparisonSimulator()).simulate(gold)
