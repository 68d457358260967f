"""A plugin-chain DNS server configured with a Corefile."""

__version__ = "0.1.2"