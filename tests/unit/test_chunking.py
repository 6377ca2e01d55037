"""Unit tests for contract text chunking and chunk-result merging."""

import pytest

from services.domain.models import Cap, ContractTerms, Fee, PaymentTerms, Rate
from services.extraction.chunking import chunk_text, merge_contract_results
from services.extraction.schema import ContractExtractionResult


def words(n: int) -> str:
    return " ".join(f"w{i}" for i in range(n))


def result(**overrides: object) -> ContractExtractionResult:
    data: dict[str, object] = {
        "vendor_name": "",
        "effective_date": "",
        "confidence": 0.9,
    }
    data.update(overrides)
    return ContractExtractionResult(**data)  # type: ignore[arg-type]


class TestChunkText:
    """Test word-window chunking."""

    def test_short_text_single_chunk(self) -> None:
        assert chunk_text("Master services agreement", 8000, 500) == ["Master services agreement"]

    def test_empty_text_single_chunk(self) -> None:
        assert chunk_text("", 8000, 500) == [""]

    def test_windows_overlap(self) -> None:
        # 14 tokens -> 10 words per window, stride 8
        chunks = chunk_text(words(26), max_tokens=14, overlap=2)

        assert len(chunks) == 3
        assert chunks[-1].split()[-1] == "w25"
        assert all(len(c.split()) <= 10 for c in chunks)
        for previous, current in zip(chunks, chunks[1:], strict=False):
            assert previous.split()[-2:] == current.split()[:2]

    def test_text_within_budget_not_split(self) -> None:
        # 8000 tokens -> 6153 words per window
        assert len(chunk_text(words(6000), 8000, 500)) == 1
        assert len(chunk_text(words(6153), 8000, 500)) == 1

    def test_no_tail_chunk_inside_previous_window(self) -> None:
        # 10 words per window, stride 8: the window at 8 already reaches w17
        chunks = chunk_text(words(18), max_tokens=14, overlap=2)

        assert len(chunks) == 2
        assert chunks[1].split() == [f"w{i}" for i in range(8, 18)]

    def test_every_word_covered_in_order(self) -> None:
        chunks = chunk_text(words(57), max_tokens=14, overlap=3)

        seen: list[str] = []
        for chunk in chunks:
            for word in chunk.split():
                if word not in seen:
                    seen.append(word)
        assert seen == words(57).split()

    def test_overlap_must_leave_progress(self) -> None:
        with pytest.raises(ValueError, match="overlap"):
            chunk_text(words(50), max_tokens=14, overlap=10)


class TestMergeContractResults:
    """Test merging of per-chunk extractions."""

    def test_empty_list_rejected(self) -> None:
        with pytest.raises(ValueError):
            merge_contract_results([])

    def test_single_result_returned_unchanged(self) -> None:
        only = result(vendor_name="Acme", effective_date="2024-01-01")
        assert merge_contract_results([only]) is only

    def test_scalars_first_non_empty(self) -> None:
        merged = merge_contract_results(
            [
                result(vendor_name="", effective_date="2024-01-01", duration=None),
                result(vendor_name="Acme Corp", effective_date="2025-01-01", duration="12 months"),
                result(vendor_name="Acme Inc", duration="24 months"),
            ]
        )

        assert merged.vendor_name == "Acme Corp"
        assert merged.effective_date == "2024-01-01"
        assert merged.duration == "12 months"

    def test_lists_concatenated_in_chunk_order(self) -> None:
        first = result(
            terms=ContractTerms(
                rates=[Rate(description="Consulting", rate=95)],
                caps=[Cap(amount=1000)],
            )
        )
        second = result(
            terms=ContractTerms(
                rates=[Rate(description="Consulting", rate=95), Rate(description="Support", rate=50)],
                escalation_clauses=["3% annual increase"],
            )
        )

        merged = merge_contract_results([first, second])

        assert [r.description for r in merged.terms.rates] == ["Consulting", "Consulting", "Support"]
        assert len(merged.terms.caps) == 1
        assert merged.terms.escalation_clauses == ["3% annual increase"]

    def test_fees_absent_everywhere_stay_none(self) -> None:
        merged = merge_contract_results([result(), result()])
        assert merged.terms.fees is None

    def test_fees_present_in_one_chunk(self) -> None:
        fee = Fee(type="fixed", description="Setup fee", amount=250)
        merged = merge_contract_results([result(), result(terms=ContractTerms(fees=[fee]))])
        assert merged.terms.fees == [fee]

    def test_payment_terms_later_chunks_override(self) -> None:
        merged = merge_contract_results(
            [
                result(terms=ContractTerms(payment_terms=PaymentTerms(net_days=30, method="ACH"))),
                result(),
                result(terms=ContractTerms(payment_terms=PaymentTerms(net_days=45))),
            ]
        )

        assert merged.terms.payment_terms is not None
        assert merged.terms.payment_terms.net_days == 45
        assert merged.terms.payment_terms.model_extra == {"method": "ACH"}

    def test_confidence_is_mean(self) -> None:
        merged = merge_contract_results([result(confidence=0.9), result(confidence=0.6)])
        assert merged.confidence == pytest.approx(0.75)

    def test_clause_spans_concatenated(self) -> None:
        merged = merge_contract_results(
            [result(clause_spans=[{"start": 0}]), result(), result(clause_spans=[{"start": 9}])]
        )
        assert merged.clause_spans == [{"start": 0}, {"start": 9}]
