"""Class label table: one label per line, line order defines the output index."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from visionx.ml.errors import InitError, InitErrorKind

if TYPE_CHECKING:
    from collections.abc import Iterator
    from pathlib import Path

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LabelTable:
    """Immutable, ordered class names. ``labels[i]`` names output position ``i``."""

    labels: tuple[str, ...]

    @classmethod
    def from_text(cls, text: str) -> LabelTable:
        lines = [line.strip() for line in text.splitlines()]
        # Trailing blank lines are padding, interior ones still occupy an index.
        while lines and not lines[-1]:
            lines.pop()
        return cls(labels=tuple(lines))

    def __len__(self) -> int:
        return len(self.labels)

    def __getitem__(self, index: int) -> str:
        return self.labels[index]

    def __iter__(self) -> Iterator[str]:
        return iter(self.labels)


def load_labels(path: Path) -> LabelTable:
    """Read a label file from disk.

    Raises:
        InitError: If the file is missing or not valid UTF-8 text.
    """
    try:
        text = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        raise InitError(InitErrorKind.ASSET_MISSING, f"Label file not found: {path}") from None
    except (OSError, UnicodeDecodeError) as exc:
        raise InitError(InitErrorKind.ASSET_MALFORMED, f"Failed to read label file {path}: {exc}") from exc

    table = LabelTable.from_text(text)
    logger.info("Loaded %d labels from %s", len(table), path)
    return table
