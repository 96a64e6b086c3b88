"""
Core package for shared utilities.

Configuration, structured logging and token verification shared by the API
routers, the reconciliation services and the background worker.
"""
