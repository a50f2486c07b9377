"""
FastAPI service for the wager-to-spin rewards site.

Player routes, user accounts and the admin back office share one
database client and one rate limiter; see ``spinsite.app.create_app``.
"""
