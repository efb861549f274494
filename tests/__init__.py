"""Test suite for the clinic scheduling service."""
