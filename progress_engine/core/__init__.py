"""Core scheduling logic."""
