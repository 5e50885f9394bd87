# tabpfn_lite

Building blocks for TabPFN-style transformers on tabular data, built on NumPy
and NetworkX.

## What it provides

- `tabpfn_lite.settings`: `Settings`, grouped into `TabPFNSettings`,
  `PytorchSettings` and `TestingSettings` sections.
  - `Settings.from_environment(environ, env_file)` starts from the defaults. It then
    applies an optional env file (`.env` by default; a missing file is ignored),
    then the environment. Environment names take the form
    `TABPFN__<SECTION>__<FIELD>`, for example `TABPFN__TABPFN__ALLOW_CPU_LARGE_DATASET=true`.
    The env file may use the same names or `section.field` keys.
  - Invalid values raise `SettingsError`.
  - `get_settings()` returns the process-wide instance. It loads the instance on
    first use and falls back to the defaults if the configuration cannot be read.
  - Settings round-trip through `to_dict`/`from_dict` and `to_json`/`from_json`.
- `tabpfn_lite.memory`: memory estimation and chunked evaluation.
  - Unit conversion: `MemoryUnit` (`"b"`, `"mb"`, `"gb"`), `convert_units` and
    `convert_bytes_to_unit`.
  - Per-batch estimates: `estimate_memory_of_one_batch` and
    `estimate_memory_remainder_after_batch`.
  - `get_max_free_memory` looks up free memory. For `"cpu"` it reads the total
    physical memory. For `"cuda"` and `"mps"` it returns the given default.
  - `apply_with_memory_optimization` runs an operation in chunks along the first
    axis.
  - `parse_save_peak_mem` and `reset_peak_memory_if_required` decide whether
    chunking (factor `SAVE_PEAK_MEM_FACTOR`, 8) should be switched on.
  - `initialize_memory_config()` exports the configured `PYTORCH_CUDA_ALLOC_CONF`
    once per process.
- `tabpfn_lite.mlp`: a two-layer, bias-free `MLP` with a GELU or ReLU
  `Activation`. It supports an optional residual connection (`add_input`) and
  chunked evaluation (`save_peak_mem_factor`).
- `tabpfn_lite.graph`: helpers for data DAGs.
  - `NodeMetadata` describes a DAG node. It is stored under the `"metadata"`
    attribute of a `networkx.DiGraph` node.
  - `add_direct_connections`, `transitive_closure` and `feature_target_subgraph`
    transform the graph.
  - The `isolated_rng(seed)` context manager seeds the random generators for a
    block and restores the global random states afterwards.
- `tabpfn_lite.posenc`: Laplacian-eigenvector positional encodings for DAG nodes
  (`add_pos_emb`). `dag_positional_embeddings` turns them into centred feature
  and target embedding matrices.

## What it does not do

The package holds the supporting pieces only. It has no:

- transformer model, attention layers or input encoders
- training or prediction
- model download or loading
- command-line tool

Free-memory detection for CUDA and MPS devices is not available. The fallback
value is used instead.

## Installing

```
pip install .
```

## Example

```python
import numpy as np
from tabpfn_lite.memory import MemoryUnit, estimate_memory_of_one_batch
from tabpfn_lite.mlp import MLP, Activation

x = np.zeros((100, 50), dtype=np.float32)
gb = estimate_memory_of_one_batch(
    x, ninp=128, features_per_group=10, n_layers=12, cache_kv=False,
    dtype_byte_size=4, unit=MemoryUnit.GIGABYTES, n_train_samples=None,
    model_params_count=1_000_000,
)

mlp = MLP(64, 128, Activation.RELU, False, False, np.random.default_rng(0))
y = mlp(np.ones((4, 64)), add_input=True, allow_inplace=True, save_peak_mem_factor=None)
```

## Running the tests

```
pip install .[test]
pytest
```