"""Prometheus metrics for the document pipelines.

Exposes key metrics for monitoring:
- Documents processed by type and outcome
- Text extraction method usage
- Pipeline duration histograms
- Discrepancies detected by type

Based on Prometheus best practices:
https://prometheus.io/docs/practices/naming/
"""

from prometheus_client import Counter, Histogram

documents_processed_total = Counter(
    "documents_processed_total",
    "Total documents processed by the pipelines",
    ["document_type", "outcome"],  # contract|invoice; active, needs_review, flagged, ...
)

text_extraction_total = Counter(
    "text_extraction_total",
    "Text extractions by method",
    ["method"],  # pdfplumber, textract, tesseract
)

pipeline_duration_seconds = Histogram(
    "pipeline_duration_seconds",
    "Document pipeline duration in seconds",
    ["document_type"],
    buckets=(0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 120.0, 300.0),
)

discrepancies_detected_total = Counter(
    "discrepancies_detected_total",
    "Discrepancies detected during reconciliation",
    ["type", "priority"],
)
