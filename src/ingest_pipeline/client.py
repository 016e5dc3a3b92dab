"""Client side of the upload flow: ask for a URL, then PUT the file to it."""

import mimetypes
from pathlib import Path
from typing import Optional
import requests

from .utils.logger import get_logger

logger = get_logger(__name__)


def request_upload_url(api_url: str, file_name: str, timeout: int = 30) -> str:
    """
    Ask the upload endpoint for a pre-signed URL.

    Args:
        api_url: Endpoint URL serving ``GET /upload?file_name=<name>``.
        file_name: Name the file should be stored under.
        timeout: Request timeout in seconds.

    Returns:
        The granted upload URL.

    Raises:
        requests.HTTPError: If the endpoint answers with an error status.
    """
    logger.info(f"Requesting upload URL for {file_name} from {api_url}")
    response = requests.get(api_url, params={'file_name': file_name}, timeout=timeout)
    response.raise_for_status()
    return response.json()['upload_url']


def upload_file(
    upload_url: str,
    file_path: str,
    content_type: Optional[str] = None,
    timeout: int = 300
) -> int:
    """
    PUT a local file to a granted upload URL.

    Returns:
        Number of bytes sent.
    """
    path = Path(file_path)
    if not path.exists():
        raise FileNotFoundError(f"File not found: {path}")

    body = path.read_bytes()
    content_type = content_type or mimetypes.guess_type(path.name)[0]
    headers = {'Content-Type': content_type} if content_type else {}

    logger.info(f"Uploading {path} ({len(body) / (1024 * 1024):.2f} MB)")
    response = requests.put(upload_url, data=body, headers=headers, timeout=timeout)
    response.raise_for_status()
    logger.info(f"Successfully uploaded {path}")
    return len(body)
