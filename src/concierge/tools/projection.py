"""
Record projection shared by the search tools.

Provider records are deep, noisy JSON. A projection flattens a record into
dotted keys, drops excluded fields and adds computed ones, then renders a
batch of records as the numbered option list handed to the formatting model.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable, Mapping
from typing import Any

ComputedField = Callable[[Mapping[str, Any]], Any]


class RecordProjection:
    """Flatten, exclude and extend records.

    Args:
        exclude: Keys to drop, matched against the top-level key or the full
            dotted path. List indexes are ignored when matching, so
            ``"prices.logo"`` drops the logo of every price entry.
        computed: Field name to callable over the original record. A ``None``
            result omits the field.
        max_depth: Nesting depth below which values are kept as-is
    """

    def __init__(
        self,
        exclude: Iterable[str] = (),
        computed: Mapping[str, ComputedField] | None = None,
        max_depth: int = 6,
    ):
        self.exclude = frozenset(exclude)
        self.computed = dict(computed or {})
        self.max_depth = max_depth

    def _excluded(self, path: str) -> bool:
        if path in self.exclude or path.split(".", 1)[0] in self.exclude:
            return True
        return ".".join(p for p in path.split(".") if not p.isdigit()) in self.exclude

    def _flatten(self, value: Any, prefix: str, depth: int, out: dict[str, Any]) -> None:
        if prefix and self._excluded(prefix):
            return
        if depth >= self.max_depth:
            out[prefix] = value
            return

        if isinstance(value, Mapping):
            for key, nested in value.items():
                self._flatten(nested, f"{prefix}.{key}" if prefix else str(key), depth + 1, out)
        elif isinstance(value, list) and any(isinstance(v, Mapping) for v in value):
            for index, nested in enumerate(value):
                self._flatten(nested, f"{prefix}.{index}", depth + 1, out)
        elif isinstance(value, list):
            out[prefix] = ", ".join(str(v) for v in value)
        elif value is not None:
            out[prefix] = value

    def project(self, record: Mapping[str, Any]) -> dict[str, Any]:
        """Flattened record with exclusions applied and computed fields added."""
        flat: dict[str, Any] = {}
        self._flatten(record, "", 0, flat)
        for name, compute in self.computed.items():
            computed = compute(record)
            if computed is not None:
                flat[name] = computed
        return flat

    def render(self, records: list[Mapping[str, Any]], title: str = "Option") -> str:
        """Numbered ``- ## <title> i of n`` blocks with one tab-indented line per field."""
        total = len(records)
        blocks = []
        for index, record in enumerate(records, start=1):
            lines = "".join(f"\n\t{key}: {value}" for key, value in self.project(record).items())
            blocks.append(f"- ## {title} {index} of {total}{lines}")
        return "\n\n".join(blocks)
