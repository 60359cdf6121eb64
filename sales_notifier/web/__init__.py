# Web Layer
# =========
# FastAPI app: JSON API for the sales form and admin dashboard.

from .app import app, create_app
