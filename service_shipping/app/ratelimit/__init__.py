"""
Rate limiting package for the Shipping Service.

Fixed-window counters per scope and client identity, plus the FastAPI
dependency that enforces them and reports quota headers.
"""
