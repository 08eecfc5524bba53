"""Batch job that rebuilds every player ranking from the game history."""
