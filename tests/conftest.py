"""Pytest configuration and fixtures."""

import importlib.util
from datetime import datetime, timedelta, timezone
from pathlib import Path
from unittest.mock import Mock

import pytest

from ingest_pipeline.converter import ConversionWorker
from ingest_pipeline.gateway import GrantSigner, UploadGateway
from ingest_pipeline.notifications import FailureNotifier
from ingest_pipeline.storage import InMemoryObjectStore

SRC_DIR = Path(__file__).parent.parent / 'src'


class FakeClock:
    """Controllable UTC clock."""

    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now = self.now + timedelta(seconds=seconds)


def load_script(relative_path: str, module_name: str):
    """Import a Lambda or Glue script by path under a unique module name."""
    spec = importlib.util.spec_from_file_location(module_name, SRC_DIR / relative_path)
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


@pytest.fixture
def clock():
    """Clock frozen at 2024-01-15 10:30:00 UTC."""
    return FakeClock(datetime(2024, 1, 15, 10, 30, 0, tzinfo=timezone.utc))


@pytest.fixture
def raw_store(clock):
    return InMemoryObjectStore('test-raw-bucket', clock=clock)


@pytest.fixture
def processed_store(clock):
    return InMemoryObjectStore('test-processed-bucket', clock=clock)


@pytest.fixture
def gateway(raw_store, clock):
    return UploadGateway(
        raw_store,
        expires_in=3600,
        signer=GrantSigner('test-secret'),
        base_url='http://localhost:8000/uploads',
        key_prefix='raw/',
        single_use=True,
        clock=clock,
    )


@pytest.fixture
def notifier():
    return Mock(spec=FailureNotifier)


@pytest.fixture
def worker(raw_store, processed_store, notifier, clock):
    return ConversionWorker(
        raw_store,
        processed_store,
        raw_prefix='raw/',
        processed_prefix='processed/',
        dead_letter_prefix='dead-letter-queue/',
        compression='snappy',
        chunk_rows=2,
        notifier=notifier,
        clock=clock,
    )


@pytest.fixture
def sample_csv():
    """Small CSV with a header, two rows, and two columns."""
    return b"order_id,customer\n1,alice\n2,bob\n"


@pytest.fixture
def sample_orders_csv():
    """CSV with mixed column types."""
    return (
        b"order_id,customer,amount,paid\n"
        b"1,alice,12.5,true\n"
        b"2,bob,25.0,false\n"
        b"3,carol,8.75,true\n"
        b"4,dave,30.0,true\n"
        b"5,erin,15.0,false\n"
    )


@pytest.fixture
def mock_context():
    """Mock Lambda context object."""
    context = Mock()
    context.aws_request_id = 'test-request-id-12345'
    context.function_name = 'raw-ingest-test'
    context.memory_limit_in_mb = 512
    return context


@pytest.fixture
def mock_aws_credentials(monkeypatch):
    """Mock AWS credentials for testing."""
    monkeypatch.setenv('AWS_ACCESS_KEY_ID', 'testing')
    monkeypatch.setenv('AWS_SECRET_ACCESS_KEY', 'testing')
    monkeypatch.setenv('AWS_SECURITY_TOKEN', 'testing')
    monkeypatch.setenv('AWS_SESSION_TOKEN', 'testing')
    monkeypatch.setenv('AWS_DEFAULT_REGION', 'us-east-1')


@pytest.fixture
def script_loader():
    """Loader for Lambda and Glue scripts that live outside the package."""
    return load_script
