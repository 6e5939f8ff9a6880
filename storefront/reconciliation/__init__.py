"""Order status reconciliation between Stripe, Printful and the order store."""
