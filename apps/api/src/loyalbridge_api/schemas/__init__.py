"""Typed views over Square and Shopify REST payloads."""
