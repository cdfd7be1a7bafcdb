"""Town Hall: policy evaluation and turn engine for a local-politics simulation."""

__version__ = "0.1.0"
