"""Domain Layer: value objects, interfaces and the error taxonomy.

Has no dependencies on infrastructure; adapters and services depend on it.
"""
