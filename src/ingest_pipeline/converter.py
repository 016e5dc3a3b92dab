"""
Conversion Worker: raw row-oriented files to partitioned Parquet.

This module:
1. Reads CSV / JSON objects from the raw store
2. Infers the schema from the file itself
3. Re-encodes the rows as compressed Parquet
4. Writes the result to the processed store under
   year=YYYY/month=MM/day=DD/source=<source>/
5. Writes a dead-letter manifest and notifies when a file cannot be converted

Two tiers share this code: the inline tier converts small files inside the
triggered function, the batch tier streams large files in chunks from a
Glue job.
"""

import io
import json
import os
import tempfile
from datetime import datetime
from typing import Callable, Iterator, List, Optional, Tuple

import pandas as pd
import pyarrow as pa
import pyarrow.parquet as pq

from .config import config
from .exceptions import (
    MalformedInputError,
    ObjectNotFoundError,
    PipelineError,
    UnsupportedFormatError,
)
from .models import (
    ConversionRecord,
    ConversionStatus,
    ConversionTier,
    ObjectInfo,
    utcnow,
)
from .notifications import FailureNotifier
from .storage import ObjectStore
from .utils.logger import get_logger

logger = get_logger(__name__)

PARQUET_CONTENT_TYPE = "application/vnd.apache.parquet"

# Longest suffix first so .csv.gz wins over a bare .gz
SUPPORTED_FORMATS = [
    ('.csv.gz', 'csv'),
    ('.csv', 'csv'),
    ('.jsonl', 'jsonl'),
    ('.ndjson', 'jsonl'),
    ('.json', 'json'),
]

DEFAULT_SOURCE = "default"

# Chunks held back while a column has only nulls; after that it is typed as string
MAX_PENDING_CHUNKS = 8

PARSE_ERRORS = (ValueError, OSError, UnicodeDecodeError, pa.ArrowException)


def detect_format(key: str) -> Tuple[str, str]:
    """
    Determine the input format from an object key.

    Args:
        key: Raw object key.

    Returns:
        Tuple of (format name, matched suffix).

    Raises:
        UnsupportedFormatError: If the suffix is not a supported format.
    """
    key_lower = key.lower()
    for suffix, fmt in SUPPORTED_FORMATS:
        if key_lower.endswith(suffix):
            return fmt, suffix

    supported = ', '.join(suffix for suffix, _ in SUPPORTED_FORMATS)
    raise UnsupportedFormatError(
        f"Unsupported file type: {key}. Supported: {supported}",
        {'key': key}
    )


def is_supported(key: str) -> bool:
    try:
        detect_format(key)
        return True
    except UnsupportedFormatError:
        return False


def select_tier(size_bytes: int, threshold_bytes: Optional[int] = None) -> ConversionTier:
    """Files at or above the threshold go to the batch tier."""
    if threshold_bytes is None:
        threshold_bytes = config.conversion.batch_threshold_bytes
    return ConversionTier.BATCH if size_bytes >= threshold_bytes else ConversionTier.INLINE


def partition_source(raw_key: str, raw_prefix: str = "") -> str:
    """Source name: the key's parent path below the raw prefix, '/' -> '-'."""
    relative = raw_key[len(raw_prefix):] if raw_prefix and raw_key.startswith(raw_prefix) else raw_key
    parent = relative.rpartition('/')[0].strip('/')
    return parent.replace('/', '-') or DEFAULT_SOURCE


def processed_key_for(
    raw_key: str,
    arrival: datetime,
    raw_prefix: str = "",
    processed_prefix: str = ""
) -> str:
    """
    Build the processed object key for a raw object.

    The key depends only on the raw key and its arrival date, so converting
    the same raw object again overwrites the previous output.

    Args:
        raw_key: Raw object key.
        arrival: Time the raw object was written.
        raw_prefix: Prefix of the raw zone, stripped before deriving the source.
        processed_prefix: Prefix of the processed zone.

    Returns:
        str: Partitioned Parquet key.
    """
    _, suffix = detect_format(raw_key)
    filename = raw_key.rpartition('/')[2]
    stem = filename[:-len(suffix)] or "data"
    source = partition_source(raw_key, raw_prefix)

    return (
        f"{processed_prefix}year={arrival.year}/month={arrival.month:02d}/"
        f"day={arrival.day:02d}/source={source}/{stem}.parquet"
    )


def read_frame(body: bytes, fmt: str, compressed: bool = False) -> pd.DataFrame:
    """
    Parse a whole raw payload into a DataFrame.

    Raises:
        MalformedInputError: If the payload cannot be parsed or has no columns.
    """
    try:
        if fmt == 'csv':
            df = pd.read_csv(io.BytesIO(body), compression='gzip' if compressed else None)
        elif fmt == 'jsonl':
            df = pd.read_json(io.StringIO(body.decode('utf-8')), lines=True, convert_dates=False)
        else:
            df = pd.read_json(io.StringIO(body.decode('utf-8')), orient='records', convert_dates=False)
    except PARSE_ERRORS as e:
        raise MalformedInputError(f"Could not parse {fmt} input: {e}") from e

    if len(df.columns) == 0:
        raise MalformedInputError(f"{fmt} input has no columns")
    return df


def iter_frames(stream, fmt: str, chunk_rows: int, compressed: bool = False) -> Iterator[pd.DataFrame]:
    """Yield DataFrames of at most ``chunk_rows`` rows from a raw stream."""
    try:
        if fmt == 'csv':
            reader = pd.read_csv(
                stream,
                chunksize=chunk_rows,
                compression='gzip' if compressed else None,
            )
        elif fmt == 'jsonl':
            reader = pd.read_json(
                io.TextIOWrapper(stream, encoding='utf-8'),
                lines=True,
                chunksize=chunk_rows,
                convert_dates=False,
            )
        else:
            # A JSON array cannot be split without parsing it whole
            yield read_frame(stream.read(), fmt)
            return

        for chunk in reader:
            yield chunk
    except PARSE_ERRORS as e:
        raise MalformedInputError(f"Could not parse {fmt} input: {e}") from e


def frame_to_parquet(df: pd.DataFrame, compression: str) -> bytes:
    """Encode a DataFrame as Parquet bytes."""
    buffer = io.BytesIO()
    try:
        df.to_parquet(buffer, index=False, compression=compression)
    except (pa.ArrowException, ValueError, TypeError) as e:
        raise MalformedInputError(f"Columns cannot be encoded as Parquet: {e}") from e
    return buffer.getvalue()


def unresolved_columns(tables: List[pa.Table]) -> List[str]:
    """Columns of the first table that hold no value in any of ``tables``."""
    return [
        name for name in tables[0].column_names
        if not any(_has_values(table, name) for table in tables)
    ]


def _has_values(table: pa.Table, name: str) -> bool:
    if name not in table.column_names:
        return False
    return table.column(name).null_count < table.num_rows


def resolve_schema(tables: List[pa.Table], widen_unresolved: bool = False) -> pa.Schema:
    """
    Schema for a set of chunks written to one Parquet file.

    Each column takes its type from the first chunk holding a non-null value
    in it. A column that is null in every chunk keeps the first chunk's type,
    or becomes a string column when ``widen_unresolved`` is set.
    """
    fields = []
    for field in tables[0].schema:
        typed = next(
            (table.schema.field(field.name) for table in tables if _has_values(table, field.name)),
            None
        )
        if typed is None:
            typed = field.with_type(pa.string()) if widen_unresolved else field
        fields.append(typed)
    return pa.schema(fields)


class ConversionWorker:
    """
    Converts raw objects into partitioned Parquet in the processed store.

    Raw objects are only ever read. Non-retryable failures (bad format,
    unparsable input, missing object) produce a failed ConversionRecord, a
    dead-letter manifest, and a notification; retryable storage errors
    propagate so the triggering event is redelivered.
    """

    def __init__(
        self,
        raw_store: ObjectStore,
        processed_store: ObjectStore,
        raw_prefix: Optional[str] = None,
        processed_prefix: Optional[str] = None,
        dead_letter_prefix: Optional[str] = None,
        compression: Optional[str] = None,
        chunk_rows: Optional[int] = None,
        notifier: Optional[FailureNotifier] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.raw_store = raw_store
        self.processed_store = processed_store
        self.raw_prefix = raw_prefix if raw_prefix is not None else config.s3.raw_prefix
        self.processed_prefix = processed_prefix if processed_prefix is not None else config.s3.processed_prefix
        self.dead_letter_prefix = (
            dead_letter_prefix if dead_letter_prefix is not None else config.s3.dead_letter_prefix
        )
        self.compression = compression or config.conversion.compression
        self.chunk_rows = chunk_rows or config.conversion.chunk_rows
        self.notifier = notifier or FailureNotifier()
        self._clock = clock

    def convert(self, key_or_prefix: str, chunked: bool = False) -> List[ConversionRecord]:
        """
        Convert one raw object, or every supported object under a prefix.

        Args:
            key_or_prefix: Exact raw key, or a prefix when no such object exists.
            chunked: Use the streaming (batch tier) conversion.

        Returns:
            One ConversionRecord per raw object, in key order.

        Raises:
            ObjectNotFoundError: If nothing convertible exists at the key or prefix.
        """
        convert_one = self.convert_object_chunked if chunked else self.convert_object

        if key_or_prefix and self.raw_store.exists(key_or_prefix):
            return [convert_one(key_or_prefix)]

        keys = [
            key for key in self.raw_store.list_keys(key_or_prefix)
            if not key.endswith('/')
        ]
        skipped = [key for key in keys if not is_supported(key)]
        for key in skipped:
            logger.info(f"Skipping unsupported file: {key}")

        keys = [key for key in keys if key not in skipped]
        if not keys:
            raise ObjectNotFoundError(
                f"No convertible objects at {self.raw_store.uri(key_or_prefix)}",
                {'bucket': self.raw_store.bucket, 'key': key_or_prefix}
            )

        logger.info(f"Converting {len(keys)} object(s) under {self.raw_store.uri(key_or_prefix)}")
        return [convert_one(key) for key in keys]

    def convert_object(self, key: str) -> ConversionRecord:
        """Convert a raw object in memory (inline tier)."""
        return self._run(key, ConversionTier.INLINE, self._write_inline)

    def convert_object_chunked(self, key: str) -> ConversionRecord:
        """Convert a raw object by streaming it in chunks (batch tier)."""
        return self._run(key, ConversionTier.BATCH, self._write_chunked)

    def _run(self, key: str, tier: ConversionTier, write: Callable) -> ConversionRecord:
        record = ConversionRecord(
            raw_bucket=self.raw_store.bucket,
            raw_key=key,
            tier=tier,
            started_at=self._clock(),
        )
        logger.info(f"Converting {self.raw_store.uri(key)} ({tier.value})")

        try:
            fmt, suffix = detect_format(key)
            info = self.raw_store.head(key)
            processed_key = processed_key_for(
                key, info.last_modified, self.raw_prefix, self.processed_prefix
            )
            rows, columns = write(info, fmt, suffix, processed_key)
        except PipelineError as e:
            if e.retryable:
                logger.error(f"Retryable failure converting {self.raw_store.uri(key)}: {e}")
                raise
            return self._fail(record, e)

        record.processed_bucket = self.processed_store.bucket
        record.processed_key = processed_key
        record.row_count = rows
        record.column_count = columns
        record.status = ConversionStatus.SUCCEEDED
        record.finished_at = self._clock()

        logger.info(
            f"Converted {self.raw_store.uri(key)} -> {record.processed_location} "
            f"({rows} rows, {columns} columns)"
        )
        return record

    def _write_inline(self, info: ObjectInfo, fmt: str, suffix: str, processed_key: str) -> Tuple[int, int]:
        body = self.raw_store.get(info.key).body
        df = read_frame(body, fmt, compressed=suffix.endswith('.gz'))
        self.processed_store.put(
            processed_key,
            frame_to_parquet(df, self.compression),
            PARQUET_CONTENT_TYPE,
        )
        return len(df), len(df.columns)

    def _write_chunked(self, info: ObjectInfo, fmt: str, suffix: str, processed_key: str) -> Tuple[int, int]:
        stream = self.raw_store.open_stream(info.key)
        writer = None
        schema = None
        pending: List[Tuple[int, pa.Table]] = []
        rows = 0

        # Spool to disk so large outputs go through a multipart upload
        fd, tmp_path = tempfile.mkstemp(suffix='.parquet')
        os.close(fd)
        try:
            for i, chunk in enumerate(iter_frames(stream, fmt, self.chunk_rows, suffix.endswith('.gz'))):
                try:
                    table = pa.Table.from_pandas(chunk, preserve_index=False)
                except (pa.ArrowException, ValueError, TypeError) as e:
                    raise MalformedInputError(f"Chunk {i} cannot be encoded: {e}", {'chunk': i}) from e

                if writer is not None:
                    rows += self._write_table(writer, schema, i, table, rows)
                    continue

                # Hold chunks back until every column has shown a value
                pending.append((i, table))
                tables = [t for _, t in pending]
                if unresolved_columns(tables) and len(pending) < MAX_PENDING_CHUNKS:
                    continue

                schema = resolve_schema(tables, widen_unresolved=True)
                writer = pq.ParquetWriter(tmp_path, schema, compression=self.compression)
                for j, held in pending:
                    rows += self._write_table(writer, schema, j, held, rows)
                pending = []

            if writer is None:
                if not pending:
                    raise MalformedInputError(f"{fmt} input contains no rows")
                # Whole file seen: all-null columns keep the type pandas gave them
                schema = resolve_schema([t for _, t in pending])
                writer = pq.ParquetWriter(tmp_path, schema, compression=self.compression)
                for j, held in pending:
                    rows += self._write_table(writer, schema, j, held, rows)

            writer.close()
            writer = None

            self.processed_store.put_file(processed_key, tmp_path, PARQUET_CONTENT_TYPE)
        finally:
            if writer is not None:
                writer.close()
            if hasattr(stream, 'close'):
                stream.close()
            os.remove(tmp_path)

        return rows, len(schema.names)

    @staticmethod
    def _write_table(writer: pq.ParquetWriter, schema: pa.Schema, index: int, table: pa.Table, total: int) -> int:
        try:
            table = table.cast(schema)
        except (pa.ArrowException, ValueError, TypeError) as e:
            raise MalformedInputError(
                f"Chunk {index} does not match the schema of the earlier chunks: {e}",
                {'chunk': index}
            ) from e

        writer.write_table(table)
        logger.info(f"  wrote chunk {index} ({table.num_rows} rows, {total + table.num_rows} total)")
        return table.num_rows

    def _fail(self, record: ConversionRecord, error: PipelineError) -> ConversionRecord:
        record.status = ConversionStatus.FAILED
        record.error = error.message
        record.error_type = type(error).__name__
        record.finished_at = self._clock()

        self._write_dead_letter(record)
        self.notifier.notify_failure(record)
        return record

    def _write_dead_letter(self, record: ConversionRecord) -> None:
        dlq_key = f"{self.dead_letter_prefix}{record.raw_key}.json"
        try:
            self.processed_store.put(
                dlq_key,
                json.dumps(record.summary(), indent=2).encode('utf-8'),
                'application/json',
            )
            logger.info(f"Wrote dead-letter manifest to {self.processed_store.uri(dlq_key)}")
        except PipelineError as e:
            # Don't fail the conversion report if the DLQ write fails, just log it
            logger.error(f"Error writing dead-letter manifest {dlq_key}: {e}")
