"""Vitrine: product-photo job admission, processing pipeline and credit ledger."""

__version__ = "0.1.0"
