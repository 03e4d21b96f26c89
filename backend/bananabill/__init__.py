"""BananaBill — commodity bill numbering, calculation and payment ledger."""

__version__ = "0.1.0"
