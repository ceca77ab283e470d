"""API Resilience Implementations.

Contains the retry engine: exponential backoff with jitter and error
classification for transient provider failures.
Bounded Context: API Resilience
"""
