"""Waitlist signup and admin broadcast backend."""
