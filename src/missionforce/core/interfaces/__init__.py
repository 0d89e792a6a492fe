"""Protocols decoupling the domain from infrastructure adapters."""
