"""Mahjong league API service.

Entry point: `league_api.main:app` (e.g. `uvicorn league_api.main:app`).
"""
