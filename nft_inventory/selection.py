"""
Consumer-owned selection of tokens, keyed by token id.

Selections live outside the pipeline, so a refreshed snapshot never
invalidates them; prune() drops ids that left the collection.
"""

from typing import Iterable, Iterator

from nft_inventory.models import EnrichedRecord, InventorySnapshot, TokenId


class SelectionSet:
    """Ordered set of selected token ids."""

    def __init__(self, token_ids: Iterable[TokenId] = ()) -> None:
        self._ids: dict[TokenId, None] = dict.fromkeys(token_ids)

    def select(self, token_id: TokenId) -> None:
        self._ids[token_id] = None

    def deselect(self, token_id: TokenId) -> None:
        self._ids.pop(token_id, None)

    def toggle(self, token_id: TokenId) -> bool:
        """Flip membership; returns True if the id is now selected."""
        if token_id in self._ids:
            del self._ids[token_id]
            return False
        self._ids[token_id] = None
        return True

    def clear(self) -> None:
        self._ids.clear()

    def is_selected(self, token_id: TokenId) -> bool:
        return token_id in self._ids

    def prune(self, snapshot: InventorySnapshot) -> list[TokenId]:
        """Deselect ids absent from `snapshot`; returns the ids removed."""
        removed = [token_id for token_id in self._ids if token_id not in snapshot]
        for token_id in removed:
            del self._ids[token_id]
        return removed

    def selected_records(self, snapshot: InventorySnapshot) -> list[EnrichedRecord]:
        """Records for the selected ids present in `snapshot`, in selection order."""
        records = (snapshot.get(token_id) for token_id in self._ids)
        return [record for record in records if record is not None]

    def token_ids(self) -> list[TokenId]:
        return list(self._ids)

    def __len__(self) -> int:
        return len(self._ids)

    def __contains__(self, token_id: object) -> bool:
        return token_id in self._ids

    def __iter__(self) -> Iterator[TokenId]:
        return iter(list(self._ids))

    def __repr__(self) -> str:
        return f"<SelectionSet({len(self._ids)} selected)>"
