"""Game domain services: rooms, match rules and the secret vault.

This package contains the core logic imported by socket handlers and HTTP
routes, keeping transport concerns separated from room and match mechanics.
"""
