"""Shared helpers for turning proxied form posts into capture records."""
from __future__ import annotations

import base64
import binascii
import os
import re
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any
from urllib.parse import unquote_plus

from requests.structures import CaseInsensitiveDict

FORM_CONTENT_TYPE = "application/x-www-form-urlencoded"
FORM_METHODS = frozenset({"POST", "PUT", "PATCH"})
MAX_FORM_SIZE = 10 << 20
EMAIL_FIELD = "email"

_INVALID_ESCAPE = re.compile(r"%(?![0-9A-Fa-f]{2})")

LogFn = Callable[[str], None]


class SubmissionError(RuntimeError):
    """A request-level failure tagged with the handler step that raised it."""

    def __init__(self, step: str, message: str) -> None:
        super().__init__(message)
        self.step = step


class MalformedSubmission(SubmissionError, ValueError):
    """The request body could not be decoded as form data."""

    def __init__(self, message: str) -> None:
        super().__init__("parse", message)


@dataclass(slots=True, frozen=True)
class SubmissionConfig:
    """Process-wide settings, read once from the Lambda environment."""

    bucket: str
    success_url: str
    failure_url: str
    additional_fields: tuple[str, ...] = ()
    ignored_error_codes: frozenset[str] | None = None
    region_name: str | None = None


@dataclass(slots=True)
class ProxiedRequest:
    method: str
    headers: CaseInsensitiveDict
    form: dict[str, list[str]] = field(default_factory=dict)


def _emit(log: LogFn | None, message: str) -> None:
    if log:
        log(message)


def parse_field_list(raw: str | None) -> tuple[str, ...]:
    """Split a comma separated list of names, trimmed, without blanks or repeats."""
    names: list[str] = []
    for chunk in (raw or "").split(","):
        name = chunk.strip()
        if name and name not in names:
            names.append(name)
    return tuple(names)


def _require(environ: Mapping[str, str], name: str) -> str:
    value = (environ.get(name) or "").strip()
    if not value:
        raise RuntimeError(f"Missing required environment variable: {name}")
    return value


def load_config(environ: Mapping[str, str] | None = None) -> SubmissionConfig:
    env = os.environ if environ is None else environ
    ignored_raw = env.get("IGNORED_STORAGE_ERROR_CODES")
    ignored = frozenset(parse_field_list(ignored_raw)) if ignored_raw is not None else None
    return SubmissionConfig(
        bucket=_require(env, "S3_BUCKET"),
        success_url=_require(env, "SUCCESS_URL"),
        failure_url=_require(env, "FAILURE_URL"),
        additional_fields=parse_field_list(env.get("ADDITIONAL_FIELDS")),
        ignored_error_codes=ignored,
        region_name=env.get("AWS_REGION") or None,
    )


def _unescape(component: str) -> str:
    bad = _INVALID_ESCAPE.search(component)
    if bad:
        escape = component[bad.start():bad.start() + 3]
        raise MalformedSubmission(f"invalid URL escape {escape!r}")
    return unquote_plus(component, errors="replace")


def parse_form_body(body: str) -> dict[str, list[str]]:
    """Decode an application/x-www-form-urlencoded body into name -> values."""
    if len(body.encode("utf-8")) > MAX_FORM_SIZE:
        raise MalformedSubmission(f"form body exceeds {MAX_FORM_SIZE} bytes")

    form: dict[str, list[str]] = {}
    for pair in body.split("&"):
        if not pair:
            continue
        if ";" in pair:
            raise MalformedSubmission("invalid semicolon separator in form body")
        name, _, value = pair.partition("=")
        form.setdefault(_unescape(name), []).append(_unescape(value))
    return form


def _media_type(content_type: str | None) -> str:
    return (content_type or "").split(";", 1)[0].strip().lower()


def _decode_base64_body(body: str) -> str:
    try:
        raw = base64.b64decode(body, validate=True)
        return raw.decode("utf-8", errors="replace")
    except binascii.Error as exc:
        raise MalformedSubmission(f"could not decode base64 request body: {exc}") from exc


def convert_proxied_request(event: Mapping[str, Any], *, log: LogFn | None = None) -> ProxiedRequest:
    """Rebuild the HTTP request carried by an API Gateway proxy event and parse its form."""
    headers = CaseInsensitiveDict(event.get("headers") or {})
    method = (event.get("httpMethod") or "").upper()
    body = event.get("body") or ""
    if event.get("isBase64Encoded"):
        body = _decode_base64_body(body)

    media_type = _media_type(headers.get("Content-Type"))
    if method not in FORM_METHODS or media_type != FORM_CONTENT_TYPE:
        _emit(log, f"Not parsing body of {method or 'unknown'} request with content type '{media_type}'")
        return ProxiedRequest(method=method, headers=headers)

    form = parse_form_body(body)
    _emit(log, f"Parsed form fields: {', '.join(sorted(form)) or '(none)'}")
    return ProxiedRequest(method=method, headers=headers, form=form)


def head_or_empty(form: Mapping[str, list[str]], key: str) -> str:
    values = form.get(key)
    if not values:
        return ""
    return values[0]


def create_output_map(form: Mapping[str, list[str]], additional_fields: Iterable[str]) -> dict[str, str]:
    """Pick the configured fields out of the form; email is always present and set last."""
    output: dict[str, str] = {}
    for raw_name in additional_fields:
        name = raw_name.strip()
        if name:
            output[name] = head_or_empty(form, name)
    output[EMAIL_FIELD] = head_or_empty(form, EMAIL_FIELD)
    return output


def redirect(location: str) -> dict[str, Any]:
    return {
        "statusCode": 302,
        "headers": {"Location": location},
        "body": "",
    }
