"""Storefront checkout: order placement and payment settlement."""
