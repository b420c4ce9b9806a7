"""raptor_shared.aws_clients — Lazy-singleton AWS service clients.

The DynamoDB client is created on first call and cached for subsequent
warm invocations.
"""
from __future__ import annotations

from typing import Optional

import boto3
from botocore.config import Config

from raptor_shared.config import DYNAMODB_REGION

__all__ = ["_get_ddb", "_reset_clients"]

_ddb = None


def _get_ddb(region: Optional[str] = None):
    """Get (or create) the DynamoDB client singleton."""
    global _ddb
    if _ddb is None:
        _ddb = boto3.client(
            "dynamodb",
            region_name=region or DYNAMODB_REGION,
            config=Config(retries={"max_attempts": 3, "mode": "standard"}),
        )
    return _ddb


def _reset_clients() -> None:
    global _ddb
    _ddb = None
