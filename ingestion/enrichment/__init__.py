"""
Lookups that complete a record after extraction: coordinates and
municipal contact data.
"""
