from __future__ import annotations

from ..models.import_result import ImportResult

"""SUMMARY line rendering for the client importer.

Format:
SUMMARY rows={total} created={created} failed={failed} batches={batches}
fallback_batches={n} elapsed_sec={elapsed} throughput_rps={throughput}
"""

__all__ = ["render_summary_line", "format_number"]


def format_number(value: float) -> str:
    """Render integers without a fraction and tiny values without exponents."""
    if value == 0:
        return "0"
    if value == int(value):
        return str(int(value))
    if abs(value) < 0.01:
        return f"{value:.6f}".rstrip("0").rstrip(".")
    return f"{value:.3f}".rstrip("0").rstrip(".")


def render_summary_line(result: ImportResult) -> str:
    """Render the SUMMARY line for an import.

    Examples:
        >>> from datetime import datetime, timezone
        >>> t = datetime(2024, 1, 1, tzinfo=timezone.utc)
        >>> r = ImportResult(created=120, failed=0, total_rows=120, batches=3,
        ...                  start_time=t, end_time=t, elapsed_seconds=2.0)
        >>> render_summary_line(r)
        'SUMMARY rows=120 created=120 failed=0 batches=3 fallback_batches=0 elapsed_sec=2 throughput_rps=60'
    """
    return (
        f"SUMMARY rows={result.total_rows} "
        f"created={result.created} "
        f"failed={result.failed} "
        f"batches={result.batches} "
        f"fallback_batches={result.fallback_batches} "
        f"elapsed_sec={format_number(result.elapsed_seconds)} "
        f"throughput_rps={format_number(result.throughput_rows_per_sec)}"
    )
