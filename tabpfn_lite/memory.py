"""Memory estimation and chunked evaluation helpers for peak-memory saving."""

from __future__ import annotations

import logging
import math
import os
import threading
from enum import Enum
from numbers import Real
from typing import Any, Callable, Literal, Union

import numpy as np

from tabpfn_lite.settings import get_settings

logger = logging.getLogger(__name__)

SAVE_PEAK_MEM_FACTOR = 8

CONSTANT_MEMORY_OVERHEAD = 100_000_000
MEMORY_FACTOR_SAVE_PEAK_MEM_ACTIVE = 2.5
DEFAULT_CPU_MEMORY_GB_IF_NOT_CUDA = 8.0

NUM_SAMPLES_FACTOR = 4.0
NUM_SAMPLES_PLUS_FEATURES = 6.5
CELLS_FACTOR = 0.25
CELLS_SQUARED_FACTOR = 1.3e-7

DEFAULT_N_LAYERS = 12
SAVE_PEAK_MEM_AUTO = "auto"

SavePeakMem = Union[bool, Literal["auto"], float]

_init_lock = threading.Lock()
_initialized = False


def initialize_memory_config() -> None:
    """Export the configured CUDA allocator setting, once per process."""
    global _initialized
    with _init_lock:
        if _initialized:
            return
        os.environ["PYTORCH_CUDA_ALLOC_CONF"] = get_settings().pytorch.pytorch_cuda_alloc_conf
        _initialized = True


class MemoryUnit(Enum):
    """Units in which memory amounts are expressed."""

    BYTES = "b"
    MEGABYTES = "mb"
    GIGABYTES = "gb"

    @classmethod
    def parse(cls, text: str) -> MemoryUnit:
        """Return the unit named by ``text`` ('b', 'mb' or 'gb')."""
        try:
            return cls(text)
        except ValueError:
            raise ValueError(
                f"Invalid unit {text}. Must be one of 'b', 'mb', or 'gb'"
            ) from None

    def factor(self) -> float:
        """Number of bytes in one of this unit."""
        return _FACTORS[self]


_FACTORS = {
    MemoryUnit.BYTES: 1.0,
    MemoryUnit.MEGABYTES: 1e6,
    MemoryUnit.GIGABYTES: 1e9,
}


def _unit(unit: MemoryUnit | str) -> MemoryUnit:
    return unit if isinstance(unit, MemoryUnit) else MemoryUnit.parse(unit)


def apply_with_memory_optimization(
    operation: Callable[[np.ndarray], np.ndarray],
    x: np.ndarray,
    add_input: bool = False,
    allow_inplace: bool = False,
    save_peak_mem_factor: int | None = None,
) -> np.ndarray:
    """Apply ``operation`` to ``x``, optionally in chunks along the first axis.

    With ``save_peak_mem_factor`` the input is split into that many chunks of
    equal (rounded-up) size, each processed separately and written back into
    a copy of ``x``. When ``add_input`` is set the input is added to the result.
    """
    x = np.asarray(x)
    if save_peak_mem_factor is None:
        result = operation(x)
        return x + result if add_input else result

    if not allow_inplace:
        raise ValueError(
            "The parameter save_peak_mem_factor only supported with 'allow_inplace' set."
        )
    if save_peak_mem_factor <= 1:
        raise ValueError("save_peak_mem_factor must be greater than 1")

    batch_size = x.shape[0]
    split_size = max(1, -(-batch_size // save_peak_mem_factor))
    result = x.copy()
    for start in range(0, batch_size, split_size):
        chunk = x[start:start + split_size]
        chunk_result = operation(chunk)
        result[start:start + split_size] = chunk + chunk_result if add_input else chunk_result
    return result


def convert_units(value: float, from_unit: MemoryUnit | str, to_unit: MemoryUnit | str) -> float:
    """Convert ``value`` from one memory unit to another."""
    return value * _unit(from_unit).factor() / _unit(to_unit).factor()


def convert_bytes_to_unit(value: float, unit: MemoryUnit | str) -> float:
    """Convert a number of bytes to ``unit``."""
    return convert_units(value, MemoryUnit.BYTES, unit)


def estimate_memory_of_one_batch(
    x: Any,
    ninp: int,
    features_per_group: int,
    n_layers: int | None,
    cache_kv: bool,
    dtype_byte_size: int,
    unit: MemoryUnit | str,
    n_train_samples: int | None,
    model_params_count: int,
) -> float:
    """Estimate the memory used for one batch, assuming no peak-memory saving.

    ``x`` is an array (or a shape) of two or three dimensions.
    """
    dims = tuple(np.shape(x))
    if len(dims) not in (2, 3):
        raise ValueError("X must be a 2D or 3D tensor")
    if cache_kv and n_train_samples is None:
        raise ValueError("n_train_samples must be provided when cache_kv is True")
    if n_layers is None:
        logger.warning(
            "Could not estimate number of encoder/decoder layers in the "
            "transformer model, defaulting to %d.",
            DEFAULT_N_LAYERS,
        )
        n_layers = DEFAULT_N_LAYERS

    n_samples, n_features = dims[-2], dims[-1]
    n_batches = dims[0] if len(dims) == 3 else 1
    n_feature_groups = math.ceil(n_features / features_per_group) + 1

    model_mem = model_params_count * dtype_byte_size
    x_mem = n_samples * n_feature_groups * dtype_byte_size
    activation_mem = n_samples * n_feature_groups * ninp * n_layers * dtype_byte_size * n_batches
    total = model_mem + x_mem + activation_mem

    if cache_kv:
        total += n_train_samples * n_feature_groups * ninp * 2 * n_layers * dtype_byte_size

    return convert_bytes_to_unit(float(total), unit)


def _get_cpu_memory() -> float:
    """Total physical memory in bytes."""
    try:
        page_size = os.sysconf("SC_PAGE_SIZE")
        phys_pages = os.sysconf("SC_PHYS_PAGES")
    except (AttributeError, ValueError, OSError) as exc:
        raise OSError("Memory detection not supported on this platform") from exc
    if page_size <= 0 or phys_pages <= 0:
        raise OSError("Failed to get system memory via sysconf")
    return float(page_size * phys_pages)


def get_max_free_memory(
    device_type: str,
    unit: MemoryUnit | str = MemoryUnit.GIGABYTES,
    default_gb_cpu_if_failed_to_calculate: float = DEFAULT_CPU_MEMORY_GB_IF_NOT_CUDA,
) -> float:
    """Return the memory available on ``device_type`` ('cpu', 'cuda' or 'mps')."""
    default_bytes = convert_units(
        default_gb_cpu_if_failed_to_calculate, MemoryUnit.GIGABYTES, MemoryUnit.BYTES
    )
    if device_type.startswith("cpu"):
        try:
            free_bytes = _get_cpu_memory()
        except OSError:
            logger.warning(
                "Could not get system memory, defaulting to %s GB",
                default_gb_cpu_if_failed_to_calculate,
            )
            free_bytes = default_bytes
    elif device_type.startswith("cuda"):
        logger.warning("CUDA memory detection is not available, using default")
        free_bytes = default_bytes
    elif device_type.startswith("mps"):
        logger.warning("MPS memory detection is not available, using default")
        free_bytes = default_bytes
    else:
        raise ValueError(f"Unknown device type: {device_type}")
    return convert_bytes_to_unit(free_bytes, unit)


def estimate_memory_remainder_after_batch(
    x: Any,
    ninp: int,
    features_per_group: int,
    n_layers: int | None,
    cache_kv: bool,
    device_type: str,
    dtype_byte_size: int,
    safety_factor: float,
    n_train_samples: int | None,
    model_params_count: int,
    max_free_mem: float | None = None,
) -> float:
    """Gigabytes left after one batch, with the batch estimate scaled by ``safety_factor``."""
    if max_free_mem is None:
        max_free_mem = get_max_free_memory(
            device_type, MemoryUnit.GIGABYTES, DEFAULT_CPU_MEMORY_GB_IF_NOT_CUDA
        )
    mem_per_batch = estimate_memory_of_one_batch(
        x,
        ninp,
        features_per_group,
        n_layers,
        cache_kv,
        dtype_byte_size,
        MemoryUnit.GIGABYTES,
        n_train_samples,
        model_params_count,
    )
    return max_free_mem - mem_per_batch * safety_factor


def parse_save_peak_mem(value: Any) -> SavePeakMem:
    """Normalise a save-peak-memory setting: a bool, ``"auto"`` or a memory limit in GB."""
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        if value == SAVE_PEAK_MEM_AUTO:
            return SAVE_PEAK_MEM_AUTO
        raise ValueError("save_peak_mem must be bool, 'auto', or number")
    if isinstance(value, Real):
        number = float(value)
        if math.isnan(number):
            raise ValueError("Invalid number for save_peak_mem")
        return number
    raise ValueError("save_peak_mem must be bool, 'auto', or number")


def reset_peak_memory_if_required(
    save_peak_mem: Any,
    x: Any,
    ninp: int,
    features_per_group: int,
    n_layers: int | None,
    cache_kv: bool,
    device_type: str,
    dtype_byte_size: int,
    safety_factor: float,
    n_train_samples: int | None,
    model_params_count: int,
    reset_callback: Callable[[int | None], None],
) -> int | None:
    """Decide whether to save peak memory and pass the chosen factor to ``reset_callback``.

    Returns the factor handed to the callback.
    """
    setting = parse_save_peak_mem(save_peak_mem)
    if isinstance(setting, bool):
        should_save = setting
    else:
        max_free_mem = None if setting == SAVE_PEAK_MEM_AUTO else setting
        remainder = estimate_memory_remainder_after_batch(
            x,
            ninp,
            features_per_group,
            n_layers,
            cache_kv,
            device_type,
            dtype_byte_size,
            safety_factor,
            n_train_samples,
            model_params_count,
            max_free_mem,
        )
        should_save = remainder < 0.0

    factor = SAVE_PEAK_MEM_FACTOR if should_save else None
    reset_callback(factor)
    return factor