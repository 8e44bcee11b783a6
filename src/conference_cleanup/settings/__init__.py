"""
Key-value application settings store.
"""
