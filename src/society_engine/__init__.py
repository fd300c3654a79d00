"""Resource lifecycle and aggregation engine for a housing society."""

__version__ = "0.1.0"
