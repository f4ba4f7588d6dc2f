"""
Billing engine services.

WHY: Services hold the seat and subscription logic between the API routes
and the DAOs (API -> Service -> DAO), so jobs and routes share one
implementation.
"""
