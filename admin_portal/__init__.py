"""Back office for the cake storefront."""
