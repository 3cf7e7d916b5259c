# src/cloak_courier/api/__init__.py
"""HTTP surface of the Cloak Courier service."""
