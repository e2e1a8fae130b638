"""
Persistence of chunk read records.
"""
