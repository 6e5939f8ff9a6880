"""HTTP routes for the storefront backend."""
