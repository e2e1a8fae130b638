"""
Payload generation and the integrity check.
"""
