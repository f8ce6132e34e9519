"""
Reference clinic backend.
"""
