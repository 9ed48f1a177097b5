"""Integrate pallets into Substrate runtime projects."""
