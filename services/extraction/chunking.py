"""Chunking of long documents and merging of per-chunk extraction results."""

import logging
import math
from typing import Any

from services.domain.models import ContractTerms, PaymentTerms
from services.extraction.schema import ContractExtractionResult

logger = logging.getLogger(__name__)

# Rough words-per-token ratio for English prose
TOKENS_PER_WORD = 1.3


def chunk_text(text: str, max_tokens: int = 8000, overlap: int = 500) -> list[str]:
    """Split text into overlapping word windows sized to a token budget.

    Each window holds ``floor(max_tokens / 1.3)`` words and consecutive windows
    start ``window - overlap`` words apart. Boundaries fall on whitespace.
    Text that fits in one window is returned unchanged, and windowing stops
    at the first window that reaches the final word.

    Raises:
        ValueError: If the overlap leaves no forward progress between windows
    """
    words = text.split()
    chunk_size = math.floor(max_tokens / TOKENS_PER_WORD)
    stride = chunk_size - overlap
    if stride <= 0:
        raise ValueError(f"Chunk overlap ({overlap}) must be smaller than chunk size ({chunk_size})")

    if len(words) <= chunk_size:
        return [text]

    chunks = []
    for i in range(0, len(words), stride):
        chunks.append(" ".join(words[i : i + chunk_size]))
        if i + chunk_size >= len(words):
            break
    return chunks


def _first_non_empty(values: list[Any]) -> Any:
    for value in values:
        if value:
            return value
    return None


def merge_contract_results(results: list[ContractExtractionResult]) -> ContractExtractionResult:
    """Merge per-chunk contract extractions in chunk order.

    - scalars: first non-empty value wins
    - rates, caps, fees, escalation clauses: concatenated without dedup
    - payment terms: shallow merge, later chunks override
    - confidence: arithmetic mean
    """
    if not results:
        raise ValueError("Cannot merge an empty list of extraction results")
    if len(results) == 1:
        return results[0]

    def scalar(attr: str) -> Any:
        return _first_non_empty([getattr(r, attr) for r in results])

    def term(attr: str) -> Any:
        return _first_non_empty([getattr(r.terms, attr) for r in results])

    fees = None
    if any(r.terms.fees is not None for r in results):
        fees = [fee for r in results for fee in (r.terms.fees or [])]

    payment_terms = None
    present = [r.terms.payment_terms for r in results if r.terms.payment_terms is not None]
    if present:
        merged_terms: dict[str, Any] = {}
        for pt in present:
            merged_terms.update(pt.model_dump(exclude_unset=True))
        payment_terms = PaymentTerms.model_validate(merged_terms)

    merged = ContractExtractionResult(
        vendor_name=scalar("vendor_name") or results[0].vendor_name,
        canonical_name=scalar("canonical_name"),
        business_description=scalar("business_description"),
        effective_date=scalar("effective_date") or results[0].effective_date,
        renewal_date=scalar("renewal_date"),
        end_date=scalar("end_date"),
        duration=scalar("duration"),
        terms=ContractTerms(
            rates=[rate for r in results for rate in r.terms.rates],
            caps=[cap for r in results for cap in r.terms.caps],
            fees=fees,
            escalation_clauses=[c for r in results for c in r.terms.escalation_clauses],
            payment_terms=payment_terms,
            billing_cycle=term("billing_cycle"),
            late_fees=term("late_fees"),
        ),
        clause_spans=[span for r in results for span in (r.clause_spans or [])] or None,
        confidence=sum(r.confidence for r in results) / len(results),
    )
    logger.info(
        f"Merged {len(results)} chunk extractions: {len(merged.terms.rates)} rates, "
        f"{len(merged.terms.caps)} caps, confidence {merged.confidence:.2f}"
    )
    return merged
