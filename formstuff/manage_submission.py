#!/usr/bin/env python3
"""
Replay a form submission through the capture handler.

Builds the same API Gateway event the Lambda receives from a URL-encoded body,
runs it through the handler and prints where the browser would be sent.

Prerequisites:
  • Set S3_BUCKET, SUCCESS_URL and FAILURE_URL (and optionally
    ADDITIONAL_FIELDS), or pass them on the CLI.
  • AWS credentials for the target bucket, unless --dry-run is used.
"""
from __future__ import annotations

import argparse
import os
import sys

from formstuff.submission_common import FORM_CONTENT_TYPE, SubmissionConfig, parse_field_list
from function import main


class DryRunS3Client:
    """Stands in for the S3 client and only reports what would be written."""

    def __init__(self, out=None) -> None:
        self.out = out or sys.stdout
        self.calls: list[dict] = []

    def put_object(self, **kwargs) -> dict:
        self.calls.append(kwargs)
        body = kwargs.get("Body") or b""
        print(f"[dry-run] s3://{kwargs.get('Bucket')}/{kwargs.get('Key')}", file=self.out)
        print(body.decode("utf-8"), file=self.out)
        return {}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Replay a form submission into S3.")
    parser.add_argument("body", help="URL-encoded form body, or '-' to read it from stdin.")
    parser.add_argument("--bucket", default=os.environ.get("S3_BUCKET"), help="Target S3 bucket.")
    parser.add_argument("--success-url", default=os.environ.get("SUCCESS_URL"), help="Redirect on success.")
    parser.add_argument("--failure-url", default=os.environ.get("FAILURE_URL"), help="Redirect on failure.")
    parser.add_argument(
        "--fields",
        default=os.environ.get("ADDITIONAL_FIELDS", ""),
        help="Comma separated form fields to keep besides email.",
    )
    parser.add_argument("--region", default=os.environ.get("AWS_REGION"), help="AWS region for the S3 client.")
    parser.add_argument("--method", default="POST", help="HTTP method of the simulated request.")
    parser.add_argument("--content-type", default=FORM_CONTENT_TYPE, help="Content-Type header to send.")
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Print the object instead of writing it to S3.",
    )
    return parser


def run(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    missing = [
        flag
        for flag, value in (
            ("--bucket", args.bucket),
            ("--success-url", args.success_url),
            ("--failure-url", args.failure_url),
        )
        if not value
    ]
    if missing:
        parser.error(f"missing required settings: {', '.join(missing)}")

    body = sys.stdin.read() if args.body == "-" else args.body
    config = SubmissionConfig(
        bucket=args.bucket,
        success_url=args.success_url,
        failure_url=args.failure_url,
        additional_fields=parse_field_list(args.fields),
        region_name=args.region,
    )
    event = {
        "httpMethod": args.method,
        "headers": {"Content-Type": args.content_type},
        "body": body,
        "isBase64Encoded": False,
    }

    response = main(
        event,
        config=config,
        s3_client=DryRunS3Client() if args.dry_run else None,
        log=print,
    )
    location = response["headers"]["Location"]
    print(f"{response['statusCode']} -> {location}")
    return 0 if location == config.success_url else 1


def cli() -> None:
    sys.exit(run())


if __name__ == "__main__":
    cli()
