"""Tests for the ONNX model manager."""

from __future__ import annotations

import threading
import time
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import TYPE_CHECKING
from unittest.mock import MagicMock, patch

import pytest
from fakes import FakeSession
from huggingface_hub.errors import LocalEntryNotFoundError

from visionx.config import Settings
from visionx.ml.errors import InitError, InitErrorKind, NotInitializedError
from visionx.ml.model_manager import (
    OnnxModelManager,
    TensorLayout,
    parse_input_shape,
    parse_output_size,
)

if TYPE_CHECKING:
    from visionx.ml.model_manager import ModelHandle

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _make_settings(**overrides: object) -> Settings:
    defaults: dict[str, object] = {
        "device": "cpu",
        "assets_dir": "/tmp/visionx_test_assets",
        "model_repo_id": None,
        "intra_op_threads": 0,
        "inter_op_threads": 1,
        "gpu_mem_limit": 2_147_483_648,
        "max_concurrent": 2,
    }
    defaults.update(overrides)
    return Settings(**defaults)  # type: ignore[arg-type]


# ---------------------------------------------------------------------------
# Graph metadata parsing
# ---------------------------------------------------------------------------


class TestParseInputShape:
    def test_static_nchw(self) -> None:
        assert parse_input_shape([1, 3, 224, 224], 224) == ((224, 224, 3), TensorLayout.NCHW)

    def test_static_nhwc(self) -> None:
        assert parse_input_shape([1, 192, 160, 3], 224) == ((192, 160, 3), TensorLayout.NHWC)

    def test_grayscale_nchw(self) -> None:
        assert parse_input_shape([1, 1, 28, 28], 224) == ((28, 28, 1), TensorLayout.NCHW)

    def test_dynamic_dims_fall_back(self) -> None:
        shape, layout = parse_input_shape(["batch", 3, "height", None], 256)
        assert shape == (256, 256, 3)
        assert layout is TensorLayout.NCHW

    def test_wrong_rank_is_malformed(self) -> None:
        with pytest.raises(InitError) as exc_info:
            parse_input_shape([3, 224, 224], 224)
        assert exc_info.value.kind == InitErrorKind.ASSET_MALFORMED

    def test_no_channel_axis_is_malformed(self) -> None:
        with pytest.raises(InitError) as exc_info:
            parse_input_shape([1, 5, 224, 224], 224)
        assert exc_info.value.kind == InitErrorKind.ASSET_MALFORMED


class TestParseOutputSize:
    def test_static(self) -> None:
        assert parse_output_size([1, 1000]) == 1000

    def test_dynamic_is_malformed(self) -> None:
        with pytest.raises(InitError, match="not static"):
            parse_output_size(["batch", "classes"])


# ---------------------------------------------------------------------------
# OnnxModelManager tests
# ---------------------------------------------------------------------------


class TestInitialize:
    def test_initialize_loads_model_and_labels(self, assets_dir: Path, patched_session: MagicMock) -> None:
        mgr = OnnxModelManager(_make_settings(assets_dir=str(assets_dir)))

        handle = mgr.initialize()

        assert mgr.is_initialized
        assert handle.name == "mobilenet_v2"
        assert handle.input_name == "input"
        assert handle.input_shape == (8, 8, 3)
        assert handle.layout is TensorLayout.NCHW
        assert handle.output_size == 4
        _, labels = mgr.require_loaded()
        assert labels.labels == ("red", "green", "blue", "dark")

        args, kwargs = patched_session.call_args
        assert args[0] == str(assets_dir / "mobilenet_v2.onnx")
        assert kwargs["providers"] == ["CPUExecutionProvider"]

    def test_initialize_is_idempotent(self, assets_dir: Path, patched_session: MagicMock) -> None:
        mgr = OnnxModelManager(_make_settings(assets_dir=str(assets_dir)))

        first = mgr.initialize()
        second = mgr.initialize()

        assert first is second
        patched_session.assert_called_once()

    def test_concurrent_first_calls_load_once(self, assets_dir: Path) -> None:
        def slow_session(*args: object, **kwargs: object) -> FakeSession:
            time.sleep(0.05)
            return FakeSession()

        mgr = OnnxModelManager(_make_settings(assets_dir=str(assets_dir)))
        barrier = threading.Barrier(8)

        def init() -> ModelHandle:
            barrier.wait()
            return mgr.initialize()

        with patch("visionx.ml.model_manager.InferenceSession", side_effect=slow_session) as mock_session_cls:
            with ThreadPoolExecutor(max_workers=8) as executor:
                handles = list(executor.map(lambda _: init(), range(8)))

        mock_session_cls.assert_called_once()
        assert all(handle is handles[0] for handle in handles)

    def test_missing_model_asset(self, tmp_path: Path, patched_session: MagicMock) -> None:
        mgr = OnnxModelManager(_make_settings(assets_dir=str(tmp_path)))

        with pytest.raises(InitError) as exc_info:
            mgr.initialize()

        assert exc_info.value.kind == InitErrorKind.ASSET_MISSING
        assert not mgr.is_initialized
        patched_session.assert_not_called()

    def test_missing_labels_asset(self, assets_dir: Path, patched_session: MagicMock) -> None:
        (assets_dir / "labels.txt").unlink()
        mgr = OnnxModelManager(_make_settings(assets_dir=str(assets_dir)))

        with pytest.raises(InitError) as exc_info:
            mgr.initialize()

        assert exc_info.value.kind == InitErrorKind.ASSET_MISSING
        assert not mgr.is_initialized

    def test_malformed_model(self, assets_dir: Path) -> None:
        mgr = OnnxModelManager(_make_settings(assets_dir=str(assets_dir)))

        with patch(
            "visionx.ml.model_manager.InferenceSession",
            side_effect=RuntimeError("[ONNXRuntimeError] : 7 : INVALID_PROTOBUF"),
        ):
            with pytest.raises(InitError) as exc_info:
                mgr.initialize()

        assert exc_info.value.kind == InitErrorKind.ASSET_MALFORMED
        assert "INVALID_PROTOBUF" in exc_info.value.detail
        assert not mgr.is_initialized

    def test_label_count_mismatch(self, assets_dir: Path, patched_session: MagicMock) -> None:
        (assets_dir / "labels.txt").write_text("red\ngreen\nblue\n", encoding="utf-8")
        mgr = OnnxModelManager(_make_settings(assets_dir=str(assets_dir)))

        with pytest.raises(InitError) as exc_info:
            mgr.initialize()

        assert exc_info.value.kind == InitErrorKind.LABEL_MISMATCH
        assert not mgr.is_initialized
        assert mgr.get_loaded_models() == []

    def test_failed_initialize_can_be_retried(self, assets_dir: Path, patched_session: MagicMock) -> None:
        labels_path = assets_dir / "labels.txt"
        labels_path.write_text("only-one\n", encoding="utf-8")
        mgr = OnnxModelManager(_make_settings(assets_dir=str(assets_dir)))

        with pytest.raises(InitError):
            mgr.initialize()

        labels_path.write_text("a\nb\nc\nd\n", encoding="utf-8")
        handle = mgr.initialize()

        assert handle.output_size == 4
        assert mgr.is_initialized

    def test_require_loaded_before_initialize(self) -> None:
        mgr = OnnxModelManager(_make_settings())

        with pytest.raises(NotInitializedError):
            mgr.require_loaded()


class TestAssetDownload:
    @patch("visionx.ml.model_manager.hf_hub_download")
    def test_missing_assets_fetched_from_hub(
        self, mock_download: MagicMock, tmp_path: Path, patched_session: MagicMock
    ) -> None:
        def fake_download(repo_id: str, filename: str, local_dir: str) -> str:
            target = Path(local_dir) / filename
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_text("red\ngreen\nblue\ndark\n" if filename.endswith(".txt") else "graph")
            return str(target)

        mock_download.side_effect = fake_download
        settings = _make_settings(assets_dir=str(tmp_path / "assets"), model_repo_id="acme/mobilenet")
        mgr = OnnxModelManager(settings)

        mgr.initialize()

        assert mock_download.call_count == 2
        mock_download.assert_any_call(
            repo_id="acme/mobilenet",
            filename="mobilenet_v2.onnx",
            local_dir=str(tmp_path / "assets"),
        )
        mock_download.assert_any_call(
            repo_id="acme/mobilenet",
            filename="labels.txt",
            local_dir=str(tmp_path / "assets"),
        )

    @patch("visionx.ml.model_manager.hf_hub_download")
    def test_local_assets_skip_download(
        self, mock_download: MagicMock, assets_dir: Path, patched_session: MagicMock
    ) -> None:
        mgr = OnnxModelManager(_make_settings(assets_dir=str(assets_dir), model_repo_id="acme/mobilenet"))

        mgr.initialize()

        mock_download.assert_not_called()

    @patch("visionx.ml.model_manager.hf_hub_download")
    def test_download_failure_is_asset_missing(self, mock_download: MagicMock, tmp_path: Path) -> None:
        mock_download.side_effect = LocalEntryNotFoundError("offline and not cached")
        mgr = OnnxModelManager(_make_settings(assets_dir=str(tmp_path), model_repo_id="acme/mobilenet"))

        with pytest.raises(InitError) as exc_info:
            mgr.initialize()

        assert exc_info.value.kind == InitErrorKind.ASSET_MISSING
        assert "acme/mobilenet" in exc_info.value.detail


class TestLifecycle:
    def test_get_loaded_models(self, assets_dir: Path, patched_session: MagicMock) -> None:
        mgr = OnnxModelManager(_make_settings(assets_dir=str(assets_dir)))

        assert mgr.get_loaded_models() == []
        mgr.initialize()
        assert mgr.get_loaded_models() == ["mobilenet_v2"]

    def test_shutdown_clears_session(self, assets_dir: Path, patched_session: MagicMock) -> None:
        mgr = OnnxModelManager(_make_settings(assets_dir=str(assets_dir)))
        mgr.initialize()

        mgr.shutdown()

        assert not mgr.is_initialized
        assert mgr.get_loaded_models() == []


class TestProviders:
    def test_provider_building_cpu(self) -> None:
        mgr = OnnxModelManager(_make_settings(device="cpu"))
        assert mgr._providers == ["CPUExecutionProvider"]

    def test_provider_building_cuda(self) -> None:
        mgr = OnnxModelManager(_make_settings(device="cuda"))
        assert len(mgr._providers) == 2
        provider_name, provider_opts = mgr._providers[0]  # type: ignore[misc]
        assert provider_name == "CUDAExecutionProvider"
        assert provider_opts["device_id"] == 0
        assert mgr._providers[1] == "CPUExecutionProvider"

    def test_provider_building_openvino(self) -> None:
        mgr = OnnxModelManager(_make_settings(device="openvino"))
        assert len(mgr._providers) == 2
        provider_name, _provider_opts = mgr._providers[0]  # type: ignore[misc]
        assert provider_name == "OpenVINOExecutionProvider"
        assert mgr._providers[1] == "CPUExecutionProvider"

    def test_session_options_threading(self) -> None:
        mgr = OnnxModelManager(_make_settings(intra_op_threads=2, inter_op_threads=3))
        assert mgr._session_options.intra_op_num_threads == 2
        assert mgr._session_options.inter_op_num_threads == 3
