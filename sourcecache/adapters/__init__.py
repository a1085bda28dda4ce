"""Concrete retrieval strategies and filesystem collaborators."""
