"""Library circulation engine: inventory, loans, reservations and borrow requests."""

__version__ = "0.1.0"
