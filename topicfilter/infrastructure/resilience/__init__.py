"""API Resilience Implementations.

Contains the serialized request queue that enforces the provider's call
cadence and the retry controller that applies exponential backoff.
Bounded Context: API Resilience
"""
