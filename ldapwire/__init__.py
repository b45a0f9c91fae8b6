"""LDAP v3 message building blocks: BER packets, errors, DNs, filters, requests and search."""

__version__ = "0.1.0"

__all__ = ["ber", "errors", "dn", "filter", "requests", "search"]