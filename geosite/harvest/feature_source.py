"""Read raw point features from files or remote feature services."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

from geosite.common.errors import InputError
from geosite.common.fs import read_csv_rows, read_json
from geosite.common.http import HttpClient

logger = logging.getLogger(__name__)

JSON_SUFFIXES = {".json", ".geojson"}
CSV_SUFFIXES = {".csv"}


def is_remote(source: str) -> bool:
    return source.startswith(("http://", "https://"))


def features_from_payload(payload: Any, origin: str) -> list[dict]:
    """Pull the feature list out of a FeatureCollection-shaped payload.

    Accepts a FeatureCollection, any mapping with a ``features`` list (ArcGIS
    query responses included), a bare list of features, or a single Feature.
    """
    if isinstance(payload, list):
        return payload
    if not isinstance(payload, dict):
        raise InputError(f"Unsupported payload from {origin}: expected an object or a list")
    if "error" in payload:
        raise InputError(f"Feature service error from {origin}: {payload['error']}")
    features = payload.get("features")
    if isinstance(features, list):
        return features
    if payload.get("type") == "Feature":
        return [payload]
    raise InputError(f"No features found in {origin}")


def _csv_features(path: Path) -> list[dict]:
    return [{"properties": dict(row)} for row in read_csv_rows(path)]


def read_local_features(path: Path) -> list[dict]:
    if not path.exists():
        raise InputError(f"Missing input file: {path}")
    suffix = path.suffix.lower()
    if suffix in CSV_SUFFIXES:
        return _csv_features(path)
    if suffix in JSON_SUFFIXES:
        try:
            payload = read_json(path)
        except json.JSONDecodeError as exc:
            raise InputError(f"Invalid JSON in {path}: {exc}") from exc
        return features_from_payload(payload, str(path))
    raise InputError(f"Unsupported input format '{suffix}' for {path}")


def fetch_remote_features(url: str, client: HttpClient, *, page_size: int = 2000) -> list[dict]:
    """Fetch a feature collection, following ArcGIS-style paging when flagged."""
    payload = client.get_json(url)
    features = list(features_from_payload(payload, url))

    while isinstance(payload, dict) and payload.get("exceededTransferLimit"):
        payload = client.get_json(url, params={"resultOffset": len(features), "resultRecordCount": page_size})
        page = features_from_payload(payload, url)
        if not page:
            break
        features.extend(page)
        logger.debug("fetched page of %s features from %s (total %s)", len(page), url, len(features))

    return features


def read_features(source: str | Path, *, http_client: HttpClient | None = None, page_size: int = 2000) -> list[dict]:
    source_str = str(source)
    if not is_remote(source_str):
        return read_local_features(Path(source_str))

    owns_client = http_client is None
    client = http_client or HttpClient()
    try:
        return fetch_remote_features(source_str, client, page_size=page_size)
    finally:
        if owns_client:
            client.close()
