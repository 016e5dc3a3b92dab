"""
Logging for the pipeline.

Inside Lambda and in prod every record is one JSON object carrying the
service, environment and (in Lambda) the function name, so CloudWatch
Insights can filter conversions across both tiers. Elsewhere records are
plain text.
"""

import logging
import os
import sys
from typing import Any, Dict, Optional
from pythonjsonlogger import jsonlogger

from ..config import config

TEXT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
JSON_FORMAT = "%(asctime)s %(name)s %(levelname)s %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def use_json_format() -> bool:
    """JSON unless LOG_FORMAT says otherwise; auto-detected when unset."""
    log_format = config.log_format.lower()
    if log_format in ("json", "text"):
        return log_format == "json"
    return config.environment == "prod" or "AWS_LAMBDA_FUNCTION_NAME" in os.environ


def static_fields() -> Dict[str, Any]:
    """Fields added to every JSON record."""
    fields = {
        "service": config.project_name,
        "environment": config.environment,
    }
    function_name = os.getenv("AWS_LAMBDA_FUNCTION_NAME")
    if function_name:
        fields["function_name"] = function_name
    return fields


def build_formatter(json_format: Optional[bool] = None) -> logging.Formatter:
    if json_format is None:
        json_format = use_json_format()

    if json_format:
        return jsonlogger.JsonFormatter(
            JSON_FORMAT,
            datefmt=DATE_FORMAT,
            rename_fields={"levelname": "level", "name": "logger"},
            static_fields=static_fields(),
        )
    return logging.Formatter(TEXT_FORMAT, datefmt=DATE_FORMAT)


def get_logger(name: Optional[str] = None, json_format: Optional[bool] = None) -> logging.Logger:
    """
    Get a configured logger instance.

    Args:
        name: Logger name. If None, uses this module's name.
        json_format: Force JSON (True) or text (False) output; auto when None.

    Returns:
        Configured logger instance.
    """
    logger = logging.getLogger(name or __name__)

    if logger.handlers:
        return logger

    log_level = getattr(logging, config.log_level.upper(), logging.INFO)
    logger.setLevel(log_level)

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(log_level)
    handler.setFormatter(build_formatter(json_format))
    logger.addHandler(handler)

    # The Lambda runtime puts its own handler on the root logger
    logger.propagate = False

    return logger
