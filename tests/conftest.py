"""Shared fixtures: on-disk fake assets and a patched ONNX InferenceSession."""

from __future__ import annotations

from typing import TYPE_CHECKING
from unittest.mock import MagicMock, patch

import pytest
from fakes import LABELS_TEXT, FakeSession

if TYPE_CHECKING:
    from collections.abc import Iterator
    from pathlib import Path


@pytest.fixture()
def assets_dir(tmp_path: Path) -> Path:
    """A directory holding a placeholder model file and a matching label file."""
    directory = tmp_path / "assets"
    directory.mkdir()
    (directory / "mobilenet_v2.onnx").write_bytes(b"placeholder onnx graph")
    (directory / "labels.txt").write_text(LABELS_TEXT, encoding="utf-8")
    return directory


@pytest.fixture()
def patched_session() -> Iterator[MagicMock]:
    """Replace InferenceSession so every load yields a fresh FakeSession."""
    with patch(
        "visionx.ml.model_manager.InferenceSession",
        side_effect=lambda *args, **kwargs: FakeSession(),
    ) as mock_session_cls:
        yield mock_session_cls
