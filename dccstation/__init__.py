"""Components of a simulated DCC model railway command station."""

__version__ = "0.1.0"