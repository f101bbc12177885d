"""planguard: multi-tenant entitlements and subscription sync."""

__version__ = "0.1.0"
