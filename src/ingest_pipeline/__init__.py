"""
Raw-to-Parquet ingestion pipeline.

Upload Gateway -> Raw Store -> Conversion Worker -> Processed Store, with
an orchestrator that routes new raw objects to the inline or batch tier.
"""

from .exceptions import PipelineError
from .gateway import GrantSigner, UploadGateway
from .converter import ConversionWorker
from .models import ConversionRecord, ConversionStatus, StoredObject, UploadGrant
from .orchestrator import ConversionOrchestrator, RunLedger
from .storage import InMemoryObjectStore, ObjectStore, S3ObjectStore

__version__ = "0.1.0"

__all__ = [
    "PipelineError",
    "GrantSigner",
    "UploadGateway",
    "ConversionWorker",
    "ConversionRecord",
    "ConversionStatus",
    "StoredObject",
    "UploadGrant",
    "ConversionOrchestrator",
    "RunLedger",
    "InMemoryObjectStore",
    "ObjectStore",
    "S3ObjectStore",
]
