# src/cloak_courier/services/__init__.py
"""Business logic services for the Cloak Courier application."""
