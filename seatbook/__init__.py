"""Coordination primitives for a distributed seat-booking service."""
