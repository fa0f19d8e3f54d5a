"""
Capture a proxied form post as a JSON object in S3 and redirect the browser.
"""
from __future__ import annotations

import logging
import os
import uuid
from functools import lru_cache
from typing import Any, Callable

from formstuff.submission_actions import save_to_bucket, serialize_output
from formstuff.submission_common import (
    LogFn,
    SubmissionConfig,
    SubmissionError,
    convert_proxied_request,
    create_output_map,
    load_config,
    redirect,
)

def _log_level(name: str | None) -> int:
    level = logging.getLevelName((name or "INFO").upper())
    return level if isinstance(level, int) else logging.INFO


logger = logging.getLogger()
logger.setLevel(_log_level(os.environ.get("LOG_LEVEL")))

FAILURE_MESSAGES = {
    "parse": "Error converting proxied request",
    "serialize": "Error serializing JSON",
    "persist": "Error saving to S3",
}


@lru_cache(maxsize=None)
def get_config() -> SubmissionConfig:
    """Configuration for this process, read from the environment on first use."""
    return load_config()


def main(
    event: dict,
    *,
    config: SubmissionConfig,
    s3_client: Any | None = None,
    uuid_factory: Callable[[], Any] = uuid.uuid4,
    log: LogFn | None = None,
) -> dict:
    """
    Parse the submitted form, store the selected fields and pick a redirect.

    Every failure ends in a redirect to the failure URL; nothing is raised to
    the Lambda runtime.
    """
    log_fn = log or logger.info
    try:
        request = convert_proxied_request(event, log=log_fn)
        output = create_output_map(request.form, config.additional_fields)
        content = serialize_output(output)
        result = save_to_bucket(
            content,
            bucket=config.bucket,
            s3_client=s3_client,
            region_name=config.region_name,
            ignored_codes=config.ignored_error_codes,
            uuid_factory=uuid_factory,
            log=log_fn,
        )
    except SubmissionError as e:
        logger.error("%s: (%s)", FAILURE_MESSAGES.get(e.step, "Error handling submission"), e)
        return redirect(config.failure_url)
    except Exception as e:
        logger.exception("Unexpected error handling submission: (%s)", e)
        return redirect(config.failure_url)

    log_fn(f"Captured submission {result.key}")
    return redirect(config.success_url)


def lambda_handler(event, context):
    """
    AWS Lambda entry point.
    """
    try:
        config = get_config()
    except RuntimeError as e:
        logger.error("Error loading configuration: (%s)", e)
        return redirect(os.environ.get("FAILURE_URL", ""))
    return main(event, config=config)


if __name__ == "__main__":
    # Simulated API Gateway event for local testing
    test_event = {
        "httpMethod": "POST",
        "headers": {"Content-Type": "application/x-www-form-urlencoded"},
        "body": "email=noreply%2Btest%40example.com&secondary=expected_value",
        "isBase64Encoded": False,
    }
    print(lambda_handler(test_event, None))
