"""
Token classification.

The kind of a token depends only on its on-chain attributes, never on
metadata. Rules are evaluated in CLASSIFICATION_ORDER and the first match
wins.
"""

from typing import Callable

from nft_inventory.models import RawAttributes, RecordKind


def _is_warden(attrs: RawAttributes) -> bool:
    # A snake held by a warden is still a snake.
    return attrs.owner_is_warden and not attrs.is_snake


def _is_egg(attrs: RawAttributes) -> bool:
    return attrs.is_egg


def _is_snake(attrs: RawAttributes) -> bool:
    return attrs.is_snake


CLASSIFICATION_ORDER: tuple[tuple[RecordKind, Callable[[RawAttributes], bool]], ...] = (
    (RecordKind.WARDEN, _is_warden),
    (RecordKind.EGG, _is_egg),
    (RecordKind.SNAKE, _is_snake),
)

DEFAULT_KIND = RecordKind.HUMAN


def classify(attrs: RawAttributes) -> RecordKind:
    """Derive the record kind from raw attributes."""
    for kind, matches in CLASSIFICATION_ORDER:
        if matches(attrs):
            return kind
    return DEFAULT_KIND
