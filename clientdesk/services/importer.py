from __future__ import annotations

import asyncio
import locale
import logging
import math
import time
from collections.abc import Awaitable, Callable, Sequence
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from ..config.loader import ImportSettings
from ..db.entity_store import EntityClient, EntityError
from ..excel.reader import ParseResult, parse_spreadsheet
from ..excel.upload import upload_file
from ..logging.error_log import ErrorLogBuffer
from ..models.error_record import ErrorRecord
from ..models.import_result import BatchMetrics, BatchStatsAccumulator, ImportResult
from ..models.mapping import (
    CUSTOM_PREFIX,
    PRESET_CLIENT_COLUMNS,
    ColumnMapping,
    is_valid_target,
    preset_target,
)
from ..models.row_data import RowData
from .automap import (
    auto_map_columns,
    build_row,
    complete_mapping,
    fallback_slug,
    make_slug,
    mapping_stats,
)
from .retry import with_retry

logger = logging.getLogger(__name__)

"""Client import session and batched commit.

An ImportSession holds the state of one import: uploaded file, headers (in
display order), raw rows and the column mapping. Nothing outlives the session.

``commit_import`` is usable on its own (the CLI and tests call it directly):
- one ``bulk_create`` per batch (default 50 rows)
- when a batch call fails, every row of that batch is created individually
  and concurrently; each failure becomes an ErrorRecord with the 1-based row
- progress callback after every batch with an integer percentage
- a short fixed delay between batches
- no rollback of already created rows
"""

__all__ = [
    "ImportSessionError",
    "ImportSession",
    "commit_import",
    "NEW_COLUMN_LABEL",
]

NEW_COLUMN_LABEL = "New column"

ProgressCallback = Callable[[int], None]
Sleep = Callable[[float], Awaitable[Any]]


class ImportSessionError(Exception):
    """Fatal session error (upload / parse / no data)."""

    def __init__(self, message: str, error_type: str = "SESSION_ERROR") -> None:
        super().__init__(message)
        self.message = message
        self.error_type = error_type


def _error_message(exc: BaseException) -> str:
    if isinstance(exc, EntityError):
        return exc.message
    return str(exc) or exc.__class__.__name__


async def _create_one_by_one(
    entity: EntityClient,
    batch: Sequence[dict[str, Any]],
) -> list[dict[str, Any] | BaseException]:
    return await asyncio.gather(*(entity.create(p) for p in batch), return_exceptions=True)


async def commit_import(
    entity: EntityClient,
    payloads: Sequence[dict[str, Any]],
    *,
    batch_size: int = 50,
    batch_delay: float = 0.05,
    progress_cb: ProgressCallback | None = None,
    source: str = "",
    error_log: ErrorLogBuffer | None = None,
    sleep: Sleep = asyncio.sleep,
) -> ImportResult:
    """Create ``payloads`` in batches with a per-row fallback.

    Args:
        entity: target EntityClient (Client)
        payloads: built client payloads, in row order
        batch_size: rows per ``bulk_create`` call
        batch_delay: seconds to wait between batches
        progress_cb: receives ``round(processed / total * 100)`` after each batch
        source: file name recorded in ErrorRecords
        error_log: buffer that also receives every ErrorRecord
        sleep: injectable for tests

    Returns:
        ImportResult with created/failed tallies and the collected errors
    """
    if batch_size < 1:
        raise ValueError("batch_size must be >= 1")

    start_dt = datetime.now(UTC)
    t0 = time.perf_counter()
    total = len(payloads)
    created = 0
    failed = 0
    errors: list[ErrorRecord] = []
    stats = BatchStatsAccumulator()

    for batch_index, offset in enumerate(range(0, total, batch_size)):
        batch = list(payloads[offset:offset + batch_size])
        b0 = time.perf_counter()
        batch_created = 0
        batch_failed = 0
        fell_back = False
        try:
            await entity.bulk_create(batch)
            batch_created = len(batch)
        except Exception as e:
            fell_back = True
            logger.warning(
                "Bulk create failed for batch %d (rows %d-%d), creating rows one by one: %s",
                batch_index + 1, offset + 1, offset + len(batch), _error_message(e),
            )
            results = await _create_one_by_one(entity, batch)
            for idx, res in enumerate(results):
                if isinstance(res, BaseException):
                    batch_failed += 1
                    row = offset + idx + 1
                    record = ErrorRecord.create(
                        source=source,
                        row=row,
                        error_type="CREATE_FAILED",
                        message=_error_message(res),
                    )
                    errors.append(record)
                    if error_log is not None:
                        error_log.append(record)
                    logger.error("Row %d failed: %s", row, record.message)
                else:
                    batch_created += 1

        created += batch_created
        failed += batch_failed
        stats.add(
            BatchMetrics(
                batch_index=batch_index,
                batch_size=len(batch),
                created=batch_created,
                failed=batch_failed,
                fell_back=fell_back,
                elapsed_seconds=time.perf_counter() - b0,
            )
        )
        processed = offset + len(batch)
        if progress_cb is not None:
            progress_cb(round(processed / total * 100))
        logger.debug("Batch %d done: created=%d failed=%d", batch_index + 1, batch_created, batch_failed)
        if processed < total and batch_delay > 0:
            await sleep(batch_delay)

    elapsed = time.perf_counter() - t0
    batches, avg, p95 = stats.get_stats()
    result = ImportResult(
        created=created,
        failed=failed,
        total_rows=total,
        batches=batches,
        start_time=start_dt,
        end_time=datetime.now(UTC),
        elapsed_seconds=elapsed,
        fallback_batches=stats.fallbacks,
        errors=errors,
        avg_batch_seconds=avg,
        p95_batch_seconds=p95,
    )
    logger.info("Import finished: created %d, failed %d", created, failed)
    return result


def _preview_sort_key(value: str | None) -> tuple[int, float, str]:
    text = value or ""
    try:
        number = float(text)
    except ValueError:
        number = math.nan
    if math.isfinite(number):
        return (0, number, "")
    return (1, 0.0, locale.strxfrm(text))


class ImportSession:
    """State of one client import.

    Typical flow::

        session = ImportSession(client_entity, settings)
        await session.load_file(Path("clients.xlsx"))
        session.update_mapping("Mobile", "phone")
        result = await session.commit()
    """

    def __init__(
        self,
        entity: EntityClient,
        settings: ImportSettings | None = None,
        *,
        error_log: ErrorLogBuffer | None = None,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self.entity = entity
        self.settings = settings or ImportSettings()
        self.error_log = error_log
        self._sleep = sleep
        self.reset()

    def reset(self) -> None:
        self.source = ""
        self.file_url: str | None = None
        self.headers: list[str] = []
        self.rows: list[RowData] = []
        self.mapping: ColumnMapping = {}
        self.status_text = ""
        self.error_records: list[ErrorRecord] = []
        self.progress = 0
        self.busy = False
        self.sort_key: str | None = None
        self.sort_dir = "asc"

    # ----- loading ---------------------------------------------------------

    def _set_status(self, text: str) -> None:
        self.status_text = text
        logger.debug("status: %s", text)

    def _fail(self, message: str, status: str, error_type: str) -> ImportSessionError:
        record = ErrorRecord.create(self.source, -1, error_type, message)
        self.error_records.append(record)
        if self.error_log is not None:
            self.error_log.append(record)
        self._set_status(status)
        logger.error(message)
        return ImportSessionError(message, error_type)

    async def load_file(self, path: Path) -> None:
        """Upload, parse and auto-map ``path``.

        Raises:
            ImportSessionError: upload or parse failure, or no data rows
        """
        self.reset()
        self.source = path.name
        uploads_dir = Path(self.settings.uploads_dir)
        try:
            self._set_status("Uploading file...")
            uploaded = await with_retry(
                "upload_file",
                lambda: upload_file(path, uploads_dir),
                retries=self.settings.retries,
                base_delay=self.settings.retry_base_delay,
                sleep=self._sleep,
                on_status=self._set_status,
            )
            self.file_url = uploaded["file_url"]
            logger.info("File uploaded: %s", self.file_url)
            self._set_status("Extracting data (CSV/Excel)...")
            parsed = await asyncio.to_thread(parse_spreadsheet, self.file_url)
        except Exception as e:
            raise self._fail(
                f"Upload or parse failed: {e}",
                "Failed. Try again in a moment or upload the file again",
                "UPLOAD_FAILED",
            ) from e
        self.load_parsed(parsed)

    def load_parsed(self, parsed: ParseResult) -> None:
        """Install a parse result into the session (limits, auto-map)."""
        if not parsed.ok:
            raise self._fail(
                f"Failed to read the file (CSV/Excel): {parsed.error or 'unknown error'}",
                "File read failed",
                "PARSE_FAILED",
            )

        headers = list(parsed.headers)
        if not headers:
            seen: dict[str, None] = {}
            for r in parsed.rows:
                for k in r:
                    key = str(k or "").strip()
                    if key:
                        seen.setdefault(key, None)
            headers = list(seen)

        rows = parsed.rows
        max_rows = self.settings.max_rows
        max_headers = self.settings.max_headers
        if len(rows) > max_rows:
            logger.warning("File has %d rows, only the first %d are imported", len(rows), max_rows)
            rows = rows[:max_rows]
        if len(headers) > max_headers:
            logger.warning("File has %d headers, only the first %d are used", len(headers), max_headers)
            headers = headers[:max_headers]

        if not rows:
            raise self._fail("No data found in the file.", "No data", "NO_DATA")

        self.headers = headers
        self.rows = [
            RowData(row_number=i, values={h: str(r.get(h, "") or "") for h in headers})
            for i, r in enumerate(rows, start=1)
        ]
        self.mapping = auto_map_columns(headers)
        self._set_status(f"Found {len(self.rows)} rows, {len(self.mapping)} matches detected")
        logger.info(
            "Loaded %d rows with %d headers (%d auto-mapped)",
            len(self.rows), len(headers), len(self.mapping),
        )

    # ----- mapping and header editing ---------------------------------------

    @property
    def errors(self) -> list[str]:
        return [r.display() for r in self.error_records]

    @property
    def stats(self):
        return mapping_stats(self.headers, self.mapping)

    def update_mapping(self, header: str, target: str | None) -> None:
        if header not in self.headers:
            raise KeyError(f"unknown header: {header}")
        if not is_valid_target(target):
            raise ValueError(f"invalid mapping target: {target!r}")
        self.mapping[header] = target

    def ensure_unique_header(self, name: str, ignore: str | None = None) -> str:
        """Return ``name`` or ``name (2)``, ``name (3)``... unused by other headers."""
        taken = set(self.headers)
        if ignore is not None:
            taken.discard(ignore)
        base = str(name or "").strip() or NEW_COLUMN_LABEL
        candidate = base
        i = 1
        while candidate in taken:
            i += 1
            candidate = f"{base} ({i})"
        return candidate

    def rename_header(self, old: str, new: str, forced_target: str | None = None) -> str:
        """Rename a header, moving row values and the mapping along with it.

        A previously unmapped header is mapped to ``cf:<slug(new)>`` unless
        ``forced_target`` is given. Returns the label actually applied.
        """
        if old not in self.headers:
            raise KeyError(f"unknown header: {old}")
        label = self.ensure_unique_header(new, ignore=old)
        if label == old and forced_target is None:
            return old

        self.headers = [label if h == old else h for h in self.headers]
        for row in self.rows:
            row.rename(old, label)
        if self.sort_key == old:
            self.sort_key = label

        current = self.mapping.pop(old, None)
        target = forced_target
        if target is None:
            slug = make_slug(label) or fallback_slug(self.headers.index(label))
            target = current if current else f"{CUSTOM_PREFIX}{slug}"
        if target:
            self.mapping[label] = target
        logger.info('Renamed header "%s" to "%s"', old, label)
        return label

    def reorder_headers(self, src_index: int, dst_index: int) -> None:
        if not (0 <= src_index < len(self.headers)) or not (0 <= dst_index < len(self.headers)):
            raise IndexError("header index out of range")
        moved = self.headers.pop(src_index)
        self.headers.insert(dst_index, moved)
        logger.debug("Header moved from %d to %d", src_index, dst_index)

    def sort_preview(self, key: str, direction: str = "asc") -> None:
        """Sort the preview; the same key and direction again clears it."""
        if direction not in ("asc", "desc"):
            raise ValueError("direction must be 'asc' or 'desc'")
        if self.sort_key == key and self.sort_dir == direction:
            self.sort_key = None
            self.sort_dir = "asc"
            logger.debug("Preview sort cleared (%s)", key)
        else:
            self.sort_key = key
            self.sort_dir = direction
            logger.debug("Preview sorted by %s %s", key, direction)

    @property
    def preview_rows(self) -> list[RowData]:
        if not self.sort_key:
            return list(self.rows)
        key = self.sort_key
        return sorted(
            self.rows,
            key=lambda r: _preview_sort_key(r.get(key)),
            reverse=self.sort_dir == "desc",
        )

    def apply_preset(self, header: str, slug: str) -> str:
        preset = next((p for p in PRESET_CLIENT_COLUMNS if p.slug == slug), None)
        if preset is None:
            raise KeyError(f"unknown preset column: {slug}")
        label = self.ensure_unique_header(preset.label, ignore=header)
        return self.rename_header(header, label, forced_target=preset_target(preset.slug))

    # ----- commit ---------------------------------------------------------

    def effective_mapping(self) -> ColumnMapping:
        completed = complete_mapping(self.headers, self.mapping)
        for header in self.headers:
            if not self.mapping.get(header) and completed.get(header):
                logger.info('Header "%s" mapped to custom field "%s"', header, completed[header])
        return completed

    def build_payloads(self) -> list[dict[str, Any]]:
        mapping = self.effective_mapping()
        placeholder = self.settings.placeholder_name
        return [build_row(r.values, mapping, placeholder) for r in self.rows]

    async def commit(self, progress_cb: ProgressCallback | None = None) -> ImportResult:
        if not self.rows:
            raise ImportSessionError("nothing to import", "NO_DATA")
        self.busy = True
        self.progress = 0
        self.error_records = []
        self._set_status("Importing...")

        def on_progress(percent: int) -> None:
            self.progress = percent
            if progress_cb is not None:
                progress_cb(percent)

        try:
            result = await commit_import(
                self.entity,
                self.build_payloads(),
                batch_size=self.settings.batch_size,
                batch_delay=self.settings.batch_delay,
                progress_cb=on_progress,
                source=self.source,
                error_log=self.error_log,
                sleep=self._sleep,
            )
        finally:
            self.busy = False
        self.error_records.extend(result.errors)
        self._set_status(f"Done: created {result.created}, failed {result.failed}")
        return result
