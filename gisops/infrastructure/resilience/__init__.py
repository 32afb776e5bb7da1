"""API Resilience Implementations.

Contains the shared rate limiter, the retry service with exponential backoff,
and the decoder that classifies raw failures into the error taxonomy.
Bounded Context: API Resilience
"""
