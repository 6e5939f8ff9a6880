"""Printful fulfillment: REST client, shipment normalization, shipping quotes."""
