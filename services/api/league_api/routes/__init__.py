"""API router package.

Route modules for the league API. Import the composed router from here:

    from league_api.routes import router

The composition itself lives in `api_router.py`.
"""

from .api_router import router
