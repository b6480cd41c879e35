"""
Persistence adapters for the Observer service.
"""
