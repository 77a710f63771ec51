"""In-memory item index for tests and ephemeral stores."""

import threading
from typing import Dict, Iterable, List, Tuple

from layerstore.core.errors import IndexInconsistencyError
from layerstore.core.validators import is_within
from layerstore.index.base import Item, ItemIndex


def _order(item: Item) -> Tuple[str, int]:
    return (item.path, -item.layer_id)


class MemoryItemIndex(ItemIndex):
    """Item index held in a dict keyed by (layer_id, path)."""

    def __init__(self):
        self._items: Dict[Tuple[int, str], Item] = {}
        self._lock = threading.Lock()

    def insert(self, items: Iterable[Item]) -> None:
        batch: Dict[Tuple[int, str], Item] = {}
        for item in items:
            key = (item.layer_id, item.path)
            if key in batch:
                raise IndexInconsistencyError(
                    f"Duplicate record in batch for layer {item.layer_id}",
                    path=item.path,
                    operation="insert",
                )
            batch[key] = item

        with self._lock:
            for key, item in batch.items():
                if key in self._items:
                    raise IndexInconsistencyError(
                        f"Record already exists in layer {item.layer_id}",
                        path=item.path,
                        operation="insert",
                    )
            self._items.update(batch)

    def query_by_path(self, path: str) -> List[Item]:
        with self._lock:
            matches = [item for item in self._items.values() if item.path == path]
        return sorted(matches, key=lambda item: item.layer_id, reverse=True)

    def query_by_layer(self, layer_id: int) -> List[Item]:
        with self._lock:
            matches = [item for item in self._items.values() if item.layer_id == layer_id]
        return sorted(matches, key=lambda item: item.path)

    def query_by_prefix(self, prefix: str) -> List[Item]:
        with self._lock:
            matches = [item for item in self._items.values() if is_within(item.path, prefix)]
        return sorted(matches, key=_order)

    def all_items(self) -> List[Item]:
        with self._lock:
            items = list(self._items.values())
        return sorted(items, key=_order)

    def layer_ids(self) -> List[int]:
        with self._lock:
            return sorted({layer_id for layer_id, _ in self._items})

    def delete_layer(self, layer_id: int) -> int:
        with self._lock:
            keys = [key for key in self._items if key[0] == layer_id]
            for key in keys:
                del self._items[key]
        return len(keys)

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)

    def __repr__(self) -> str:
        return f"MemoryItemIndex(items={len(self)})"
