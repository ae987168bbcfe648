"""fsbench - filesystem benchmark matrix for storage devices."""

__version__ = "0.3.0"
