"""Model manager: resolve, load, and hold the bundled ONNX classifier.

Resolves the model and label assets (fetching them from HuggingFace when
configured and missing locally), builds the ONNX InferenceSession, validates
the graph's tensor shapes against the label table, and keeps the result in a
single-assignment cell for the lifetime of the process.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from enum import StrEnum
from pathlib import Path
from typing import TYPE_CHECKING, Any, Protocol

from huggingface_hub import hf_hub_download
from huggingface_hub.errors import HfHubHTTPError, LocalEntryNotFoundError
from onnxruntime import InferenceSession, SessionOptions
from onnxruntime.capi.onnxruntime_pybind11_state import ExecutionMode

from visionx.ml.errors import InitError, InitErrorKind, NotInitializedError
from visionx.ml.labels import LabelTable, load_labels

if TYPE_CHECKING:
    from collections.abc import Sequence

    from visionx.config import Settings

logger = logging.getLogger(__name__)

SUPPORTED_CHANNELS: frozenset[int] = frozenset({1, 3})


# ---------------------------------------------------------------------------
# Protocol (kept for test mocking)
# ---------------------------------------------------------------------------


class ModelManager(Protocol):
    """Protocol for model lifecycle management."""

    @property
    def is_initialized(self) -> bool:
        """Return True once the model and labels are loaded."""
        ...

    def initialize(self) -> ModelHandle:
        """Load the model and labels exactly once and return the handle."""
        ...

    def require_loaded(self) -> tuple[ModelHandle, LabelTable]:
        """Return the loaded handle and labels, or raise NotInitializedError."""
        ...

    def get_loaded_models(self) -> list[str]:
        """Return names of currently loaded models."""
        ...

    def shutdown(self) -> None:
        """Release the loaded session."""
        ...


# ---------------------------------------------------------------------------
# Model handle
# ---------------------------------------------------------------------------


class TensorLayout(StrEnum):
    NCHW = "nchw"
    NHWC = "nhwc"


@dataclass(frozen=True)
class ModelHandle:
    """A loaded classifier graph plus its fixed tensor metadata.

    ``input_shape`` is always channel-last ``(H, W, C)``; ``layout`` records how
    the graph itself wants the batch laid out.
    """

    name: str
    session: InferenceSession
    input_name: str
    input_shape: tuple[int, int, int]
    layout: TensorLayout
    output_size: int


@dataclass(frozen=True)
class _LoadedModel:
    handle: ModelHandle
    labels: LabelTable
    loaded_at: float


def parse_input_shape(
    dims: Sequence[Any], fallback_size: int
) -> tuple[tuple[int, int, int], TensorLayout]:
    """Derive ``(H, W, C)`` and the tensor layout from a 4-D graph input shape.

    Dynamic spatial dimensions (symbolic names or None) fall back to
    ``fallback_size``. The batch dimension is ignored.
    """
    if len(dims) != 4:
        raise InitError(InitErrorKind.ASSET_MALFORMED, f"Expected a 4-D model input, got shape {list(dims)}")

    def _static(dim: Any) -> int | None:
        return dim if isinstance(dim, int) and dim > 0 else None

    _, second, third, fourth = (_static(d) for d in dims)
    if second in SUPPORTED_CHANNELS and fourth not in SUPPORTED_CHANNELS:
        layout, channels, height, width = TensorLayout.NCHW, second, third, fourth
    elif fourth in SUPPORTED_CHANNELS:
        layout, channels, height, width = TensorLayout.NHWC, fourth, second, third
    else:
        raise InitError(
            InitErrorKind.ASSET_MALFORMED,
            f"Cannot find a 1- or 3-channel axis in model input shape {list(dims)}",
        )

    return (height or fallback_size, width or fallback_size, channels), layout


def parse_output_size(dims: Sequence[Any]) -> int:
    """Return the static class dimension of the graph output."""
    if not dims:
        raise InitError(InitErrorKind.ASSET_MALFORMED, "Model output has no dimensions")
    size = dims[-1]
    if not isinstance(size, int) or size <= 0:
        raise InitError(InitErrorKind.ASSET_MALFORMED, f"Model output dimension is not static: {list(dims)}")
    return size


# ---------------------------------------------------------------------------
# Concrete implementation
# ---------------------------------------------------------------------------


class OnnxModelManager:
    """Loads the bundled ONNX classifier once and shares it read-only."""

    def __init__(self, settings: Settings) -> None:
        self._settings = settings
        self._assets_dir = Path(settings.assets_dir)

        self._lock = threading.Lock()
        self._loaded: _LoadedModel | None = None

        self._providers = self._build_providers()
        self._session_options = self._build_session_options()

    # -- Public API ---------------------------------------------------------

    @property
    def is_initialized(self) -> bool:
        return self._loaded is not None

    def initialize(self) -> ModelHandle:
        """Load the model and labels, or return the already loaded handle.

        Concurrent first callers serialize on the lock; exactly one performs
        the load and the others observe its outcome. Nothing is stored unless
        every step succeeds.

        Raises:
            InitError: If an asset is missing or malformed, or the label count
                does not match the model output size.
        """
        loaded = self._loaded
        if loaded is not None:
            return loaded.handle

        with self._lock:
            # Double-check: another thread may have loaded it while we waited.
            if self._loaded is not None:
                return self._loaded.handle

            started = time.monotonic()
            model_path = self._resolve_asset(self._settings.model_filename)
            labels_path = self._resolve_asset(self._settings.labels_filename)
            handle = self._load_handle(model_path)
            labels = load_labels(labels_path)

            if len(labels) != handle.output_size:
                raise InitError(
                    InitErrorKind.LABEL_MISMATCH,
                    f"Label file {labels_path} has {len(labels)} entries "
                    f"but model output size is {handle.output_size}",
                )

            self._loaded = _LoadedModel(handle=handle, labels=labels, loaded_at=time.monotonic())
            logger.info(
                "Initialized %s in %.2fs (input=%s, layout=%s, classes=%d)",
                handle.name,
                time.monotonic() - started,
                handle.input_shape,
                handle.layout,
                handle.output_size,
            )
            return handle

    def require_loaded(self) -> tuple[ModelHandle, LabelTable]:
        """Return the loaded handle and label table."""
        loaded = self._loaded
        if loaded is None:
            raise NotInitializedError()
        return loaded.handle, loaded.labels

    def get_loaded_models(self) -> list[str]:
        """Return names of models with active sessions."""
        loaded = self._loaded
        return [] if loaded is None else [loaded.handle.name]

    def shutdown(self) -> None:
        """Drop the loaded session."""
        with self._lock:
            self._loaded = None
            logger.info("Model session released")

    # -- Internal -----------------------------------------------------------

    def _resolve_asset(self, filename: str) -> Path:
        local = self._assets_dir / filename
        if local.is_file():
            return local

        repo_id = self._settings.model_repo_id
        if repo_id is None:
            raise InitError(InitErrorKind.ASSET_MISSING, f"Asset not found: {local}")

        try:
            downloaded = Path(
                hf_hub_download(
                    repo_id=repo_id,
                    filename=filename,
                    local_dir=str(self._assets_dir),
                )
            )
        except (HfHubHTTPError, LocalEntryNotFoundError, OSError) as exc:
            raise InitError(
                InitErrorKind.ASSET_MISSING,
                f"Asset {filename} not found locally and could not be fetched from {repo_id}: {exc}",
            ) from exc
        logger.info("Downloaded %s to %s", filename, downloaded)
        return downloaded

    def _load_handle(self, model_path: Path) -> ModelHandle:
        try:
            session = InferenceSession(
                str(model_path),
                sess_options=self._session_options,
                providers=self._providers,
            )
        except Exception as exc:  # noqa: BLE001 - onnxruntime raises pybind-specific types
            raise InitError(
                InitErrorKind.ASSET_MALFORMED, f"Failed to load ONNX model {model_path}: {exc}"
            ) from exc

        inputs = session.get_inputs()
        outputs = session.get_outputs()
        if len(inputs) != 1 or not outputs:
            raise InitError(
                InitErrorKind.ASSET_MALFORMED,
                f"Expected a single-input classifier, got {len(inputs)} inputs and {len(outputs)} outputs",
            )

        input_shape, layout = parse_input_shape(inputs[0].shape, self._settings.fallback_input_size)
        return ModelHandle(
            name=self._settings.model_name,
            session=session,
            input_name=inputs[0].name,
            input_shape=input_shape,
            layout=layout,
            output_size=parse_output_size(outputs[0].shape),
        )

    def _build_providers(self) -> list[str | tuple[str, dict[str, object]]]:
        """Execution providers for ``settings.device``, always ending in CPU.

        CUDA and OpenVINO keep the CPU provider as the per-node fallback for
        any classifier op they cannot place.
        """
        device = self._settings.device
        if device == "cuda":
            return [
                (
                    "CUDAExecutionProvider",
                    {
                        "device_id": 0,
                        "gpu_mem_limit": self._settings.gpu_mem_limit,
                        "arena_extend_strategy": "kSameAsRequested",
                    },
                ),
                "CPUExecutionProvider",
            ]
        if device == "openvino":
            return [
                ("OpenVINOExecutionProvider", {"device_type": "CPU"}),
                "CPUExecutionProvider",
            ]
        return ["CPUExecutionProvider"]

    def _build_session_options(self) -> SessionOptions:
        """Session options for one image per run with a fixed input shape."""
        opts = SessionOptions()
        opts.intra_op_num_threads = self._settings.intra_op_threads
        opts.inter_op_num_threads = self._settings.inter_op_threads
        opts.execution_mode = ExecutionMode.ORT_SEQUENTIAL
        opts.enable_mem_pattern = True
        opts.enable_mem_reuse = True

        if self._settings.device == "openvino":
            # OpenVINO does its own graph optimization
            from onnxruntime import GraphOptimizationLevel

            opts.graph_optimization_level = GraphOptimizationLevel.ORT_DISABLE_ALL
        return opts
