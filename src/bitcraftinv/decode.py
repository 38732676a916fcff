"""Decoder for the devalue-style ``__data.json`` graph format used by bitjita.com."""

import logging
import math
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)


class _Undefined:
    """Marker for values the encoder wrote as ``undefined``."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __bool__(self) -> bool:
        return False

    def __repr__(self) -> str:
        return 'UNDEFINED'


UNDEFINED = _Undefined()

# Reserved negative references. -2 marks a hole in a sparse array.
SENTINELS: Dict[int, Any] = {
    -1: UNDEFINED,
    -2: UNDEFINED,
    -3: math.nan,
    -4: math.inf,
    -5: -math.inf,
    -6: -0.0,
}

_UNRESOLVED = object()


class GraphDecodeError(ValueError):
    """Raised when a slot reference cannot be resolved."""


def locate_slots(document: Any) -> Optional[List[Any]]:
    """Return the slot arena of the first data node, or None if there is none."""
    if not isinstance(document, dict):
        return None
    nodes = document.get('nodes')
    if not isinstance(nodes, list):
        return None
    for node in nodes:
        if isinstance(node, dict) and node.get('type') == 'data' and isinstance(node.get('data'), list):
            return node['data']
    return None


class GraphDecoder:
    """Hydrates a slot arena into plain Python values.

    Every slot is resolved at most once. Lists and dicts are allocated and
    memoized before their children are filled in, so cyclic graphs resolve to
    objects that contain themselves instead of recursing forever.
    """

    def __init__(self, slots: List[Any]):
        self.slots = slots
        self.memo: List[Any] = [_UNRESOLVED] * len(slots)

    def _check_ref(self, ref: Any) -> int:
        if isinstance(ref, bool) or not isinstance(ref, int):
            raise GraphDecodeError(f"Slot reference must be an integer, got {ref!r}")
        if ref < 0 and ref not in SENTINELS:
            raise GraphDecodeError(f"Unknown sentinel reference {ref}")
        if ref >= len(self.slots):
            raise GraphDecodeError(f"Slot reference {ref} out of range (arena size {len(self.slots)})")
        return ref

    def _allocate(self, index: int) -> Any:
        """Memoize the shell value for a slot and return it."""
        raw = self.slots[index]
        if isinstance(raw, list):
            value: Any = []
        elif isinstance(raw, dict):
            value = {}
        else:
            # str, bool, None and numbers are terminal; anything else passes through
            value = raw
        self.memo[index] = value
        return value

    def hydrate(self, index: int) -> Any:
        """Resolve the value for a slot reference, including sentinels."""
        index = self._check_ref(index)
        if index < 0:
            return SENTINELS[index]
        if self.memo[index] is not _UNRESOLVED:
            return self.memo[index]

        # Phase 1: allocate every reachable slot.
        pending = [index]
        reachable = []
        while pending:
            current = pending.pop()
            if self.memo[current] is not _UNRESOLVED:
                continue
            self._allocate(current)
            raw = self.slots[current]
            if isinstance(raw, list):
                children = raw
            elif isinstance(raw, dict):
                children = list(raw.values())
            else:
                continue
            reachable.append(current)
            for ref in children:
                ref = self._check_ref(ref)
                if ref >= 0 and self.memo[ref] is _UNRESOLVED:
                    pending.append(ref)

        # Phase 2: fill containers in element / key order.
        for current in reachable:
            raw = self.slots[current]
            target = self.memo[current]
            if isinstance(raw, list):
                for ref in raw:
                    target.append(self._resolved(ref))
            else:
                for key, ref in raw.items():
                    target[key] = self._resolved(ref)

        return self.memo[index]

    def _resolved(self, ref: int) -> Any:
        if ref < 0:
            return SENTINELS[ref]
        return self.memo[ref]


def decode(document: Any) -> Any:
    """Decode a SvelteKit ``__data.json`` document into its root value.

    Returns None when the document carries no data node. Malformed references
    raise GraphDecodeError.
    """
    slots = locate_slots(document)
    if slots is None:
        logger.debug("No data node found in document")
        return None
    if not slots:
        return None
    return GraphDecoder(slots).hydrate(0)
