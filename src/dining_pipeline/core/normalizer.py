from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from decimal import Decimal
import logging
import math
import re
from typing import Any

from dining_pipeline.core.exceptions import ParseError
from dining_pipeline.core.models import (
    COORDINATE_MAX_LENGTH,
    IDENTIFIER_MAX_LENGTH,
    NAME_MAX_LENGTH,
    DiningRecord,
    Rejection,
    SourceDocument,
)

logger = logging.getLogger(__name__)

_IDENTIFIER_KEYS = ("id", "slug", "location_id", "locationId")
_NAME_KEYS = ("name", "display_name", "title")
_LATITUDE_KEYS = ("lat", "latitude")
_LONGITUDE_KEYS = ("lon", "lng", "longitude")
_IMAGE_URL_KEYS = ("imageUrls", "image_urls", "imageURLs")

# ASCII digits, optional leading minus and fraction.
_DECIMAL_TEXT = re.compile(r"-?[0-9]+(\.[0-9]+)?")


def _pick(item: dict[str, Any], *keys: str) -> Any:
    for key in keys:
        if key in item and item[key] is not None:
            return item[key]
    return None


def _to_str(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip()


def _decimal_text(value: Any) -> str | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float):
        if not math.isfinite(value):
            return None
        return format(Decimal(repr(value)), "f")
    if isinstance(value, str):
        text = value.strip()
        return text if _DECIMAL_TEXT.fullmatch(text) else None
    return None


def _coordinate(value: Any, axis: str, limit: float, identifier: str, source_url: str) -> str:
    if value is None or (isinstance(value, str) and not value.strip()):
        raise ParseError(f"missing_{axis}", identifier=identifier, source_url=source_url)
    text = _decimal_text(value)
    if text is None:
        raise ParseError(f"invalid_{axis}", identifier=identifier, source_url=source_url)
    if not (-limit <= float(text) <= limit):
        raise ParseError(f"{axis}_out_of_range", identifier=identifier, source_url=source_url)
    if len(text) > COORDINATE_MAX_LENGTH:
        raise ParseError(f"{axis}_too_long", identifier=identifier, source_url=source_url)
    return text


def _image_urls(value: Any, identifier: str, source_url: str) -> tuple[str, ...]:
    if value is None:
        return ()
    if not isinstance(value, list) or not all(isinstance(url, str) for url in value):
        raise ParseError("invalid_image_urls", identifier=identifier, source_url=source_url)
    return tuple(url.strip() for url in value if url.strip())


@dataclass(frozen=True)
class NormalizationResult:
    records: list[DiningRecord]
    rejections: list[Rejection]

    @property
    def total(self) -> int:
        return len(self.records) + len(self.rejections)


class DiningRecordNormalizer:
    def normalize(self, document: SourceDocument) -> DiningRecord:
        payload = document.payload
        if not isinstance(payload, dict):
            raise ParseError("payload_not_object", source_url=document.source_url)

        identifier = _to_str(_pick(payload, *_IDENTIFIER_KEYS))
        if not identifier:
            raise ParseError("missing_identifier", source_url=document.source_url)
        if len(identifier) > IDENTIFIER_MAX_LENGTH:
            raise ParseError(
                "identifier_too_long",
                identifier=identifier[:IDENTIFIER_MAX_LENGTH],
                source_url=document.source_url,
            )
        name = _to_str(_pick(payload, *_NAME_KEYS))
        if not name:
            raise ParseError("missing_name", identifier=identifier, source_url=document.source_url)
        if len(name) > NAME_MAX_LENGTH:
            raise ParseError("name_too_long", identifier=identifier, source_url=document.source_url)
        latitude = _coordinate(_pick(payload, *_LATITUDE_KEYS), "latitude", 90.0, identifier, document.source_url)
        longitude = _coordinate(_pick(payload, *_LONGITUDE_KEYS), "longitude", 180.0, identifier, document.source_url)
        image_urls = _image_urls(_pick(payload, *_IMAGE_URL_KEYS), identifier, document.source_url)
        return DiningRecord(
            identifier=identifier,
            name=name,
            latitude=latitude,
            longitude=longitude,
            last_seen=document.fetched_at,
            image_urls=image_urls,
        )

    def normalize_all(self, documents: Iterable[SourceDocument]) -> NormalizationResult:
        records: list[DiningRecord] = []
        rejections: list[Rejection] = []
        seen: set[str] = set()
        for document in sorted(documents, key=lambda item: (item.page, item.position)):
            try:
                record = self.normalize(document)
                if record.identifier in seen:
                    raise ParseError(
                        "duplicate_identifier",
                        identifier=record.identifier,
                        source_url=document.source_url,
                    )
            except ParseError as exc:
                rejections.append(Rejection(identifier=exc.identifier, source_url=exc.source_url, reason=exc.reason))
                logger.debug(
                    "document_rejected",
                    extra={"identifier": exc.identifier, "reason": exc.reason, "page": document.page},
                )
                continue
            seen.add(record.identifier)
            records.append(record)
        return NormalizationResult(records=records, rejections=rejections)
