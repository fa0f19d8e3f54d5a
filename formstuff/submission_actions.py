"""Serialize capture records and store them in S3."""
from __future__ import annotations

import json
import logging
import uuid
from collections.abc import Callable, Collection, Mapping
from dataclasses import dataclass
from enum import Enum
from typing import Any

import boto3
from botocore.exceptions import ClientError

from formstuff.submission_common import LogFn, SubmissionError

logger = logging.getLogger(__name__)

JSON_CONTENT_TYPE = "application/json"


def _emit(log: LogFn | None, message: str) -> None:
    if log:
        log(message)


class ErrorDisposition(Enum):
    IGNORABLE = "ignorable"
    FATAL = "fatal"


@dataclass(slots=True)
class SaveResult:
    """Outcome of a single put_object call."""

    key: str
    ignored_error: str | None = None


def serialize_output(output: Mapping[str, str]) -> bytes:
    try:
        encoded = json.dumps(output, sort_keys=True, separators=(",", ":"), ensure_ascii=False)
        return encoded.encode("utf-8")
    except (TypeError, ValueError) as exc:
        raise SubmissionError("serialize", f"could not encode record as JSON: {exc}") from exc


def _error_code(exc: ClientError) -> str:
    return str(exc.response.get("Error", {}).get("Code") or "Unknown")


def classify_storage_error(
    exc: BaseException,
    ignored_codes: Collection[str] | None = None,
) -> ErrorDisposition:
    """
    Decide whether a failed S3 write should fail the submission.

    Errors without an S3 error code (connection problems, missing credentials,
    plain I/O) are always fatal. Coded S3 errors are tolerated; when
    ``ignored_codes`` is given only the listed codes are.
    """
    if not isinstance(exc, ClientError):
        return ErrorDisposition.FATAL
    if ignored_codes is None or _error_code(exc) in ignored_codes:
        return ErrorDisposition.IGNORABLE
    return ErrorDisposition.FATAL


def new_object_key(uuid_factory: Callable[[], Any] = uuid.uuid4) -> str:
    try:
        instance_id = uuid_factory()
    except Exception as exc:
        raise SubmissionError("persist", f"could not generate object id: {exc}") from exc
    return f"{instance_id}.json"


def save_to_bucket(
    content: bytes,
    *,
    bucket: str,
    s3_client: Any | None = None,
    region_name: str | None = None,
    ignored_codes: Collection[str] | None = None,
    uuid_factory: Callable[[], Any] = uuid.uuid4,
    log: LogFn | None = None,
) -> SaveResult:
    """Write ``content`` to ``bucket`` under a fresh ``<uuid>.json`` key."""
    key = new_object_key(uuid_factory)

    if s3_client is None:
        aws = boto3.session.Session()
        s3_client = aws.client("s3", region_name=region_name)

    try:
        s3_client.put_object(
            Bucket=bucket,
            Key=key,
            Body=content,
            ContentType=JSON_CONTENT_TYPE,
        )
    except Exception as exc:
        if classify_storage_error(exc, ignored_codes) is ErrorDisposition.FATAL:
            raise SubmissionError("persist", f"failed to write s3://{bucket}/{key}: {exc}") from exc
        code = _error_code(exc)
        logger.warning("Ignoring S3 error %s for s3://%s/%s: %s", code, bucket, key, exc)
        _emit(log, f"S3 reported {code} for {key}; continuing.")
        return SaveResult(key=key, ignored_error=code)

    _emit(log, f"Stored submission as s3://{bucket}/{key}")
    return SaveResult(key=key)
