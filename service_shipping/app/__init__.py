"""
Shipping Service package for the storefront backend.

The service quotes carrier shipping rates and standardizes addresses:
- Carrier access: OAuth token caching with single-flight refresh
- Rate aggregation: one unscoped search, then per-class fallback
- Rate caching: short-lived per cart and destination
- Rate limiting: fixed windows per scope and client

Structure:
- app.main: FastAPI app, routes, and component wiring.
- app.adapters: HTTP clients for the carrier API.
- app.caching: Quote cache.
- app.ratelimit: Fixed-window limiter and middleware.
- app.domain: Models, validation, package estimation and aggregation.
"""
