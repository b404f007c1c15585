"""Branching conversation backend."""
