# Copyright 2025 Google LLC
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
# ==============================================================================


"""
Helpers for Cloudinary image references and context metadata.
"""

import re
from typing import Any
from urllib.parse import urlparse

_VERSION_SEGMENT = re.compile(r"^v\d+$")


def extract_public_id(url_or_public_id: str) -> str:
    """
    Returns the Cloudinary public id for a stored image reference.

    References that are not http(s) URLs are assumed to already be public
    ids. For delivery URLs the path after `upload/` is used, skipping the
    `v<digits>` version segment and dropping the file extension.
    """
    if not url_or_public_id.startswith(("http://", "https://")):
        return url_or_public_id

    try:
        path_parts = urlparse(url_or_public_id).path.split("/")
    except ValueError:
        return url_or_public_id

    if "upload" not in path_parts:
        return url_or_public_id
    start = path_parts.index("upload") + 1
    if start < len(path_parts) and _VERSION_SEGMENT.match(path_parts[start]):
        start += 1

    public_id_with_ext = "/".join(path_parts[start:])
    last_dot = public_id_with_ext.rfind(".")
    if last_dot > 0:
        return public_id_with_ext[:last_dot]
    return public_id_with_ext


def parse_context(raw: Any) -> dict:
    """
    Normalizes a resource's context metadata into a flat dict.

    The Admin API returns context either as a pipe-delimited
    `key=value|key=value` string or as a mapping, optionally with the values
    nested under `custom`.
    """
    if not raw:
        return {}

    if isinstance(raw, str):
        context = {}
        for pair in raw.split("|"):
            key, _, value = pair.partition("=")
            key, value = key.strip(), value.strip()
            if key and value:
                context[key] = value
        return context

    if isinstance(raw, dict):
        context = {k: v for k, v in raw.items() if k != "custom"}
        custom = raw.get("custom")
        if isinstance(custom, dict):
            context.update(custom)
        return context

    return {}


def build_context(values: dict) -> dict:
    """Drops empty values so they are not written as blank context keys."""
    return {k: str(v) for k, v in values.items() if v not in (None, "")}
