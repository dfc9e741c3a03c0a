"""Storefront service."""
