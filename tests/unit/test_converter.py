"""
Unit tests for the Conversion Worker.

Tests cover:
- Format detection, tier selection, and partitioned key layout
- CSV / JSON to Parquet round trips
- Malformed input handling and dead-letter manifests
- Re-running a conversion on the same raw object
"""

import gzip
import io
import json
from datetime import datetime, timezone

import pandas as pd
import pyarrow as pa
import pyarrow.parquet as pq
import pytest

from ingest_pipeline import converter
from ingest_pipeline.converter import (
    detect_format,
    partition_source,
    processed_key_for,
    resolve_schema,
    select_tier,
    unresolved_columns,
)
from ingest_pipeline.exceptions import (
    ObjectNotFoundError,
    StorageUnavailableError,
    UnsupportedFormatError,
)
from ingest_pipeline.models import ConversionStatus, ConversionTier


def read_parquet(store, key) -> pd.DataFrame:
    return pd.read_parquet(io.BytesIO(store.get(key).body))


class TestHelpers:
    """Test pure helper functions."""

    @pytest.mark.parametrize("key,fmt", [
        ('raw/a.csv', 'csv'),
        ('raw/A.CSV', 'csv'),
        ('raw/a.csv.gz', 'csv'),
        ('raw/a.json', 'json'),
        ('raw/a.jsonl', 'jsonl'),
        ('raw/a.ndjson', 'jsonl'),
    ])
    def test_detect_format(self, key, fmt):
        assert detect_format(key)[0] == fmt

    @pytest.mark.parametrize("key", ['raw/a.txt', 'raw/a.parquet', 'raw/a.gz', 'raw/csv'])
    def test_unsupported_format(self, key):
        with pytest.raises(UnsupportedFormatError):
            detect_format(key)

    def test_select_tier(self):
        threshold = 100 * 1024 * 1024
        assert select_tier(1024, threshold) == ConversionTier.INLINE
        assert select_tier(threshold - 1, threshold) == ConversionTier.INLINE
        assert select_tier(threshold, threshold) == ConversionTier.BATCH

    @pytest.mark.parametrize("key,source", [
        ('raw/sales/orders.csv', 'sales'),
        ('raw/sales/eu/orders.csv', 'sales-eu'),
        ('raw/orders.csv', 'default'),
        ('orders.csv', 'default'),
    ])
    def test_partition_source(self, key, source):
        assert partition_source(key, 'raw/') == source

    def test_processed_key_layout(self):
        arrival = datetime(2024, 3, 5, 23, 59, tzinfo=timezone.utc)

        key = processed_key_for('raw/sales/orders.csv.gz', arrival, 'raw/', 'processed/')

        assert key == 'processed/year=2024/month=03/day=05/source=sales/orders.parquet'


class TestInlineConversion:
    """Test in-memory conversion of small files."""

    def test_small_csv_round_trips(self, worker, raw_store, processed_store, sample_csv):
        raw_store.put('raw/sales/orders.csv', sample_csv, 'text/csv')

        record = worker.convert_object('raw/sales/orders.csv')

        assert record.status == ConversionStatus.SUCCEEDED
        assert record.tier == ConversionTier.INLINE
        assert record.row_count == 2
        assert record.column_count == 2
        assert record.processed_key == (
            'processed/year=2024/month=01/day=15/source=sales/orders.parquet'
        )

        df = read_parquet(processed_store, record.processed_key)
        assert list(df.columns) == ['order_id', 'customer']
        assert df['order_id'].tolist() == [1, 2]
        assert df['customer'].tolist() == ['alice', 'bob']

    def test_raw_object_untouched(self, worker, raw_store, sample_csv):
        original = raw_store.put('raw/orders.csv', sample_csv, 'text/csv')

        worker.convert_object('raw/orders.csv')

        assert raw_store.get('raw/orders.csv') == original

    def test_typed_columns(self, worker, raw_store, processed_store, sample_orders_csv):
        raw_store.put('raw/orders.csv', sample_orders_csv)

        record = worker.convert_object('raw/orders.csv')
        df = read_parquet(processed_store, record.processed_key)

        assert df['amount'].tolist() == [12.5, 25.0, 8.75, 30.0, 15.0]
        assert df['paid'].tolist() == [True, False, True, True, False]

    def test_gzipped_csv(self, worker, raw_store, processed_store, sample_csv):
        raw_store.put('raw/orders.csv.gz', gzip.compress(sample_csv))

        record = worker.convert_object('raw/orders.csv.gz')

        assert record.status == ConversionStatus.SUCCEEDED
        assert read_parquet(processed_store, record.processed_key)['customer'].tolist() == ['alice', 'bob']

    def test_json_records(self, worker, raw_store, processed_store):
        rows = [{'id': 1, 'name': 'alice'}, {'id': 2, 'name': 'bob'}]
        raw_store.put('raw/users.json', json.dumps(rows).encode())

        record = worker.convert_object('raw/users.json')
        df = read_parquet(processed_store, record.processed_key)

        assert df.to_dict(orient='records') == rows

    def test_json_lines(self, worker, raw_store, processed_store):
        raw_store.put('raw/events.jsonl', b'{"id": 1, "kind": "click"}\n{"id": 2, "kind": "view"}\n')

        record = worker.convert_object('raw/events.jsonl')

        assert record.row_count == 2
        assert read_parquet(processed_store, record.processed_key)['kind'].tolist() == ['click', 'view']

    def test_header_only_csv(self, worker, raw_store, processed_store):
        raw_store.put('raw/empty.csv', b'a,b\n')

        record = worker.convert_object('raw/empty.csv')

        assert record.status == ConversionStatus.SUCCEEDED
        assert record.row_count == 0
        assert list(read_parquet(processed_store, record.processed_key).columns) == ['a', 'b']


class TestConversionFailures:
    """Test non-retryable and retryable failure handling."""

    @pytest.mark.parametrize("key,body", [
        ('raw/empty.csv', b''),
        ('raw/ragged.csv', b'a,b\n1,2\n3,4,5,6\n'),
        ('raw/bad.json', b'{not json'),
    ])
    def test_malformed_input(self, worker, raw_store, processed_store, notifier, key, body):
        raw_store.put(key, body)

        record = worker.convert_object(key)

        assert record.status == ConversionStatus.FAILED
        assert record.error_type == 'MalformedInputError'
        assert record.processed_key is None
        notifier.notify_failure.assert_called_once_with(record)

        manifest = json.loads(processed_store.get(f'dead-letter-queue/{key}.json').body)
        assert manifest['raw_key'] == key
        assert manifest['status'] == 'failed'

    def test_unsupported_format(self, worker, raw_store, notifier):
        raw_store.put('raw/report.pdf', b'%PDF-1.4')

        record = worker.convert_object('raw/report.pdf')

        assert record.status == ConversionStatus.FAILED
        assert record.error_type == 'UnsupportedFormatError'
        notifier.notify_failure.assert_called_once()

    def test_missing_raw_object(self, worker, notifier):
        record = worker.convert_object('raw/gone.csv')

        assert record.status == ConversionStatus.FAILED
        assert record.error_type == 'ObjectNotFoundError'

    def test_storage_outage_propagates(self, worker, raw_store, processed_store, notifier, sample_csv, monkeypatch):
        raw_store.put('raw/orders.csv', sample_csv)

        def unavailable(*args, **kwargs):
            raise StorageUnavailableError('processed bucket unreachable')

        monkeypatch.setattr(processed_store, 'put', unavailable)

        with pytest.raises(StorageUnavailableError):
            worker.convert_object('raw/orders.csv')
        notifier.notify_failure.assert_not_called()

    def test_dead_letter_write_failure_is_logged_not_raised(
        self, worker, raw_store, processed_store, notifier, monkeypatch
    ):
        raw_store.put('raw/bad.csv', b'')

        def unavailable(*args, **kwargs):
            raise StorageUnavailableError('processed bucket unreachable')

        monkeypatch.setattr(processed_store, 'put', unavailable)

        record = worker.convert_object('raw/bad.csv')

        assert record.status == ConversionStatus.FAILED
        notifier.notify_failure.assert_called_once()


class TestIdempotence:
    """Re-running a conversion overwrites its output rather than duplicating it."""

    def test_rerun_overwrites_same_key(self, worker, raw_store, processed_store, sample_csv, clock):
        raw_store.put('raw/orders.csv', sample_csv)

        first = worker.convert_object('raw/orders.csv')
        clock.advance(3600)
        second = worker.convert_object('raw/orders.csv')

        assert first.processed_key == second.processed_key
        assert processed_store.list_keys('processed/') == [first.processed_key]
        assert len(read_parquet(processed_store, second.processed_key)) == 2


class TestChunkedConversion:
    """Test streaming conversion used by the batch tier."""

    def test_chunks_combined_into_one_file(self, worker, raw_store, processed_store, sample_orders_csv):
        raw_store.put('raw/orders.csv', sample_orders_csv)

        record = worker.convert_object_chunked('raw/orders.csv')

        assert record.status == ConversionStatus.SUCCEEDED
        assert record.tier == ConversionTier.BATCH
        assert record.row_count == 5
        assert record.column_count == 4

        df = read_parquet(processed_store, record.processed_key)
        assert df['order_id'].tolist() == [1, 2, 3, 4, 5]
        assert df['customer'].tolist() == ['alice', 'bob', 'carol', 'dave', 'erin']

    def test_chunked_json_lines(self, worker, raw_store, processed_store):
        body = b''.join(f'{{"id": {i}, "v": "x{i}"}}\n'.encode() for i in range(5))
        raw_store.put('raw/events.jsonl', body)

        record = worker.convert_object_chunked('raw/events.jsonl')

        assert record.row_count == 5
        assert read_parquet(processed_store, record.processed_key)['id'].tolist() == [0, 1, 2, 3, 4]

    def test_sparse_column_typed_by_later_chunk(self, worker, raw_store, processed_store):
        # chunk_rows=2: 'note' is empty throughout the first chunk
        raw_store.put('raw/notes.csv', b'id,note\n1,\n2,\n3,late\n4,text\n')

        inline = worker.convert_object('raw/notes.csv')
        batch = worker.convert_object_chunked('raw/notes.csv')

        assert inline.status == ConversionStatus.SUCCEEDED
        assert batch.status == ConversionStatus.SUCCEEDED
        assert batch.row_count == 4

        df = read_parquet(processed_store, batch.processed_key)
        assert df['id'].tolist() == [1, 2, 3, 4]
        assert df['note'].isna().tolist() == [True, True, False, False]
        assert df['note'].tolist()[2:] == ['late', 'text']

    def test_null_json_values_typed_by_later_chunk(self, worker, raw_store, processed_store):
        raw_store.put('raw/sparse.jsonl', b'{"v": null}\n{"v": null}\n{"v": "x"}\n')

        record = worker.convert_object_chunked('raw/sparse.jsonl')

        assert record.status == ConversionStatus.SUCCEEDED
        assert read_parquet(processed_store, record.processed_key)['v'].tolist()[2] == 'x'

    def test_long_null_run_written_as_string(self, worker, raw_store, processed_store, monkeypatch):
        monkeypatch.setattr(converter, 'MAX_PENDING_CHUNKS', 1)
        raw_store.put('raw/notes.csv', b'id,note\n1,\n2,\n3,late\n4,\n5,7\n')

        record = worker.convert_object_chunked('raw/notes.csv')

        assert record.status == ConversionStatus.SUCCEEDED
        body = processed_store.get(record.processed_key).body
        assert pq.read_schema(io.BytesIO(body)).field('note').type == pa.string()
        df = read_parquet(processed_store, record.processed_key)
        assert df['note'].tolist()[2] == 'late'
        assert df['note'].tolist()[4] == '7'

    def test_column_empty_in_whole_file(self, worker, raw_store, processed_store):
        raw_store.put('raw/empty_note.csv', b'id,note\n1,\n2,\n3,\n')

        record = worker.convert_object_chunked('raw/empty_note.csv')

        assert record.status == ConversionStatus.SUCCEEDED
        assert record.row_count == 3
        assert record.column_count == 2
        assert read_parquet(processed_store, record.processed_key)['note'].isna().all()

    def test_chunk_schema_conflict(self, worker, raw_store, processed_store):
        # chunk_rows=2: the first chunk fixes 'value' as int64, the second holds text
        raw_store.put('raw/drift.csv', b'value\n1\n2\nabc\ndef\n')

        record = worker.convert_object_chunked('raw/drift.csv')

        assert record.status == ConversionStatus.FAILED
        assert record.error_type == 'MalformedInputError'
        assert processed_store.list_keys('processed/') == []


class TestConvertPrefix:
    """Test convert() over keys and prefixes."""

    def test_single_key(self, worker, raw_store, sample_csv):
        raw_store.put('raw/orders.csv', sample_csv)

        records = worker.convert('raw/orders.csv')

        assert [r.raw_key for r in records] == ['raw/orders.csv']

    def test_prefix_converts_supported_files(self, worker, raw_store, sample_csv):
        raw_store.put('raw/sales/b.csv', sample_csv)
        raw_store.put('raw/sales/a.csv', sample_csv)
        raw_store.put('raw/sales/notes.txt', b'skip me')
        raw_store.put('raw/other/c.csv', sample_csv)

        records = worker.convert('raw/sales/')

        assert [r.raw_key for r in records] == ['raw/sales/a.csv', 'raw/sales/b.csv']
        assert all(r.status == ConversionStatus.SUCCEEDED for r in records)

    def test_empty_prefix(self, worker):
        with pytest.raises(ObjectNotFoundError):
            worker.convert('raw/nothing-here/')


class TestChunkSchema:
    """Test schema resolution across chunks."""

    def test_unresolved_columns(self):
        first = pa.table({'id': [1, 2], 'note': pa.array([None, None], type=pa.float64())})
        second = pa.table({'id': [3], 'note': ['late']})

        assert unresolved_columns([first]) == ['note']
        assert unresolved_columns([first, second]) == []

    def test_type_from_first_chunk_with_values(self):
        first = pa.table({'id': [1, 2], 'note': pa.array([None, None], type=pa.null())})
        second = pa.table({'id': [3], 'note': ['late']})

        schema = resolve_schema([first, second])

        assert schema.field('id').type == pa.int64()
        assert schema.field('note').type == pa.string()

    def test_widen_unresolved(self):
        first = pa.table({'note': pa.array([None], type=pa.float64())})

        assert resolve_schema([first]).field('note').type == pa.float64()
        assert resolve_schema([first], widen_unresolved=True).field('note').type == pa.string()
