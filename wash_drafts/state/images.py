"""Deduplication and deterministic ordering of session images."""

from __future__ import annotations

import math
from dataclasses import replace
from typing import Callable, Iterable, Sequence

from .models import CachedImage


def sort_images(images: Iterable[CachedImage]) -> list[CachedImage]:
    """Stable sort by ``(sequence or +inf, arrival index, url)``.

    Unpositioned images land after positioned ones and keep their arrival
    order, so sorting an already sorted list is a no-op and the first entry
    is the default cover image.
    """
    indexed = list(enumerate(images))
    indexed.sort(
        key=lambda pair: (
            pair[1].sequence if pair[1].sequence is not None else math.inf,
            pair[0],
            pair[1].url,
        )
    )
    return [image for _, image in indexed]


def merge_images(
    existing: Iterable[CachedImage],
    incoming: Iterable[CachedImage],
) -> list[CachedImage]:
    """Key by ``url``; ``incoming`` wins on conflict."""
    by_url: dict[str, CachedImage] = {}
    for image in existing:
        by_url[image.url] = image
    for image in incoming:
        by_url[image.url] = image
    return sort_images(by_url.values())


def enrich_images(
    existing: Sequence[CachedImage],
    updates: Iterable[CachedImage],
    patch: Callable[[CachedImage, CachedImage], CachedImage],
) -> list[CachedImage]:
    """Merge ``updates`` into ``existing`` field-wise via ``patch(current, update)``.

    Used when the incoming records only own some of the fields (fetched data,
    upload results) and must not drop what another step already wrote.
    """
    current = {image.url: image for image in existing}
    patched = [patch(current.get(update.url, update), update) for update in updates]
    return merge_images(existing, patched)


def with_fetched_data(current: CachedImage, fetched: CachedImage) -> CachedImage:
    return replace(current, data_url=fetched.data_url or current.data_url, error=fetched.error)


__all__ = ["enrich_images", "merge_images", "sort_images", "with_fetched_data"]
