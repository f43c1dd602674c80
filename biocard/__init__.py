"""
Backend package for the bio card service.

Provides a FastAPI application for accounts, session tokens and profile
cards, with a relational store behind a cached repository layer.
"""
