"""
Domain rules shared by the API and the worker: prize tables, the weighted
prize draw and ticket accounting. Nothing here touches I/O.
"""
