"""sessionstream: client-side streaming conversation engine for agent chat backends."""

__version__ = "0.1.0"
