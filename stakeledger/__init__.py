"""Height-aware SQLite storage for proof-of-stake chain data."""

__version__ = "0.1.0"