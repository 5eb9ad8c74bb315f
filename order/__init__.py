"""Cake storefront: catalog snapshot, pricing engine and cart."""
