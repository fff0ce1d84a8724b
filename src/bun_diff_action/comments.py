from __future__ import annotations

import json
from typing import Final, cast

from bun_diff_action.models import Metadata, TrackingComment


METADATA_PREFIX: Final[str] = "<!-- bun-diff-action: "
METADATA_SUFFIX: Final[str] = " -->"
LOCKB_FILENAME: Final[str] = "bun.lockb"


class MalformedMetadataError(ValueError):
    """The trailing marker line of a comment could not be decoded."""


def is_lockb_file(filename: str) -> bool:
    return filename.split("/")[-1] == LOCKB_FILENAME


def is_tracking_comment(body: str) -> bool:
    last_line = _last_line(body)
    return last_line.startswith(f"{METADATA_PREFIX}{{") and last_line.endswith(
        f"}}{METADATA_SUFFIX}"
    )


def encode_metadata(metadata: Metadata) -> str:
    payload = json.dumps(metadata.to_json_object(), separators=(",", ":"), ensure_ascii=False)
    return f"{METADATA_PREFIX}{payload}{METADATA_SUFFIX}"


def decode_metadata(body: str) -> Metadata:
    payload_obj = _decode_payload(body)
    path = payload_obj.get("path")
    if not isinstance(path, str):
        raise MalformedMetadataError("Marker payload is missing a string 'path'")
    return Metadata(path=path, extra=_extra_fields(payload_obj))


def metadata_for_comment(comment: TrackingComment) -> Metadata:
    payload_obj = _decode_payload(comment.body)
    # The platform follows renames; the encoded path may be stale or absent.
    if comment.path:
        return Metadata(path=comment.path, extra=_extra_fields(payload_obj))
    path = payload_obj.get("path")
    if not isinstance(path, str):
        raise MalformedMetadataError(
            "Marker payload is missing a string 'path' and the comment has no file path"
        )
    return Metadata(path=path, extra=_extra_fields(payload_obj))


def render_diff_comment(*, diff: str, metadata: Metadata, header: str | None = None) -> str:
    base = f"```diff\n{diff}\n```\n\n{encode_metadata(metadata)}"
    if header:
        return f"{header}\n\n{base}"
    return base


def _decode_payload(body: str) -> dict[str, object]:
    if not is_tracking_comment(body):
        raise MalformedMetadataError("Comment does not end with a bun-diff-action marker line")
    last_line = _last_line(body)
    raw = last_line[len(METADATA_PREFIX) : -len(METADATA_SUFFIX)]
    try:
        payload = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise MalformedMetadataError(f"Marker payload is not valid JSON: {exc}") from exc
    if not isinstance(payload, dict):
        raise MalformedMetadataError("Marker payload must be a JSON object")
    return cast(dict[str, object], payload)


def _extra_fields(payload_obj: dict[str, object]) -> dict[str, object]:
    return {key: value for key, value in payload_obj.items() if key != "path"}


def _last_line(body: str) -> str:
    return body.strip().split("\n")[-1]
