"""tscombine: merge irregular time-series sources onto one regular time grid."""

__version__ = "0.1.0"
