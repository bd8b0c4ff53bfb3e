"""
Core data structures for Rampart request handling.

Provides:
- MultiDict: Read-only multi-value dictionary for parsed form fields
- Headers: Case-insensitive, multi-value, read-only header access
"""

from __future__ import annotations

from typing import (
    Dict, Iterable, Iterator, List, Mapping, Optional, Tuple, Union
)


# ============================================================================
# MultiDict
# ============================================================================

class MultiDict(Mapping[str, str]):
    """
    Dictionary that supports multiple values per key.

    Used for form fields where keys can repeat. Item access returns the
    first value; ``get_all`` returns every value. Instances are never
    mutated after construction.
    """

    __slots__ = ("_data",)

    def __init__(self, items: Optional[Union[Iterable[Tuple[str, str]], Mapping[str, Union[str, List[str]]]]] = None):
        data: Dict[str, List[str]] = {}

        if items:
            if isinstance(items, Mapping):
                for key, value in items.items():
                    if isinstance(value, (list, tuple)):
                        data[key] = [str(v) for v in value]
                    else:
                        data[key] = [str(value)]
            else:
                for key, value in items:
                    data.setdefault(key, []).append(value)

        self._data = data

    def __getitem__(self, key: str) -> str:
        """Get first value for a key."""
        values = self._data[key]
        if not values:
            raise KeyError(key)
        return values[0]

    def __iter__(self) -> Iterator[str]:
        return iter(self._data)

    def __len__(self) -> int:
        return len(self._data)

    def __repr__(self) -> str:
        return f"MultiDict({self._data})"

    def get_all(self, key: str) -> List[str]:
        """Get all values for a key."""
        return list(self._data.get(key, []))


# ============================================================================
# Headers
# ============================================================================

class Headers:
    """
    Case-insensitive header access with raw preservation.

    Built from ASGI raw ``(bytes, bytes)`` pairs. Lookups normalise the
    name; the raw list keeps the original casing and order. ``with_header``
    returns a new instance so the object can be shared safely.
    """

    __slots__ = ("raw", "_index")

    def __init__(self, raw: Iterable[Tuple[bytes, bytes]] = ()):
        self.raw: Tuple[Tuple[bytes, bytes], ...] = tuple(raw)
        index: Dict[str, List[str]] = {}
        for name, value in self.raw:
            key = name.decode("latin-1").lower()
            index.setdefault(key, []).append(value.decode("latin-1"))
        self._index = index

    @classmethod
    def from_mapping(cls, headers: Optional[Mapping[str, Union[str, Iterable[str]]]] = None) -> "Headers":
        """Build from a ``{name: value}`` mapping; list values repeat the header."""
        raw = []
        for name, value in (headers or {}).items():
            values = [value] if isinstance(value, str) else list(value)
            for v in values:
                raw.append((name.encode("latin-1"), v.encode("latin-1")))
        return cls(raw)

    def get(self, name: str, default: Optional[str] = None) -> Optional[str]:
        """Get first value for header (case-insensitive)."""
        values = self._index.get(name.lower())
        if values:
            return values[0]
        return default

    def get_all(self, name: str) -> List[str]:
        """Get all values for header (case-insensitive)."""
        return list(self._index.get(name.lower(), []))

    def line(self, name: str) -> str:
        """All values for header joined with ``", "``; empty string when absent."""
        return ", ".join(self._index.get(name.lower(), []))

    def has(self, name: str) -> bool:
        return name.lower() in self._index

    def with_header(self, name: str, value: str) -> "Headers":
        """Return a copy with ``name`` replaced by a single ``value``."""
        key = name.lower()
        raw = [
            (n, v) for n, v in self.raw
            if n.decode("latin-1").lower() != key
        ]
        raw.append((name.encode("latin-1"), value.encode("latin-1")))
        return Headers(raw)

    def items(self) -> Iterator[Tuple[str, str]]:
        for name, value in self.raw:
            yield name.decode("latin-1"), value.decode("latin-1")

    def __contains__(self, name: str) -> bool:
        return self.has(name)

    def __getitem__(self, name: str) -> str:
        value = self.get(name)
        if value is None:
            raise KeyError(f"Header '{name}' not found")
        return value

    def __len__(self) -> int:
        return len(self.raw)

    def __repr__(self) -> str:
        return f"Headers({list(self.items())})"
