"""
Domain Services - Pure Business Logic
====================================
Core business logic without external dependencies.
"""
