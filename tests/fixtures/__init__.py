"""Test fixtures for the i3x3 daemon."""
