"""Vendor name canonicalization and invoice-to-vendor routing.

Names are compared by cosine similarity of their embeddings. The two
operations use different acceptance thresholds: canonicalization only reuses
a known name above 0.85, invoice routing accepts a vendor above 0.80.
"""

import asyncio
import logging
import math
import re
from collections.abc import Sequence

from services.ai.base import AIProvider
from services.domain.models import Vendor
from services.shared.config import Settings

logger = logging.getLogger(__name__)

_NON_ALPHANUMERIC = re.compile(r"[^a-z0-9]")


def slugify(name: str) -> str:
    """Lowercase a vendor name and strip everything but letters and digits."""
    return _NON_ALPHANUMERIC.sub("", name.lower())


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """dot(a, b) / (|a| * |b|); 0.0 when either vector has zero magnitude."""
    if len(a) != len(b):
        raise ValueError(f"Embedding dimensions differ: {len(a)} != {len(b)}")
    dot = sum(x * y for x, y in zip(a, b, strict=True))
    magnitude = math.sqrt(sum(x * x for x in a)) * math.sqrt(sum(y * y for y in b))
    if magnitude == 0:
        return 0.0
    return dot / magnitude


class VendorMatcher:
    """Embedding-based vendor matching."""

    def __init__(self, provider: AIProvider, settings: Settings) -> None:
        self.provider = provider
        self.canonicalization_threshold = settings.vendor_canonicalization_threshold
        self.match_threshold = settings.vendor_match_threshold

    async def _best_match(self, name: str, candidates: Sequence[str]) -> tuple[int, float]:
        """Index and similarity of the candidate most similar to ``name``.

        Ties keep the earliest candidate.
        """
        vectors = await asyncio.gather(
            self.provider.embed(name), *(self.provider.embed(c) for c in candidates)
        )
        target, *others = vectors
        best_index, best_similarity = 0, -math.inf
        for i, vector in enumerate(others):
            similarity = cosine_similarity(target, vector)
            if similarity > best_similarity:
                best_index, best_similarity = i, similarity
        return best_index, best_similarity

    async def canonicalize(self, name: str, known_names: Sequence[str]) -> str:
        """Return the known name ``name`` most likely refers to, or its slug.

        Raises:
            ExtractionServiceFailure: If the embedding service fails
        """
        if not known_names:
            return slugify(name)

        index, similarity = await self._best_match(name, known_names)
        if similarity > self.canonicalization_threshold:
            logger.info(
                f"Canonicalized vendor '{name}' to '{known_names[index]}' "
                f"(similarity {similarity:.3f})"
            )
            return known_names[index]
        return slugify(name)

    async def match_vendor(self, name: str, known_vendors: Sequence[Vendor]) -> str | None:
        """Return the id of the vendor an invoice's vendor name refers to, or None.

        Raises:
            ExtractionServiceFailure: If the embedding service fails
        """
        if not known_vendors:
            return None

        index, similarity = await self._best_match(name, [v.name for v in known_vendors])
        if similarity > self.match_threshold:
            vendor = known_vendors[index]
            logger.info(f"Matched invoice vendor '{name}' to {vendor.id} (similarity {similarity:.3f})")
            return vendor.id

        logger.warning(f"No vendor matched '{name}' (best similarity {similarity:.3f})")
        return None
