"""
hivestore CLI

Operational commands for the coordination database.
"""
