"""Settings, memory estimation, MLP blocks and DAG positional encodings for tabular transformers."""

__version__ = "0.1.0"
__all__ = ["settings", "memory", "mlp", "graph", "posenc"]