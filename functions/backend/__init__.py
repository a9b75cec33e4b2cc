"""
Backend package for the Love Journal API.

This package provides a FastAPI application that fronts Cloudinary and
Firestore, plus the storage, database and identity abstractions shared with
the Cloud Functions in main.py.
"""
