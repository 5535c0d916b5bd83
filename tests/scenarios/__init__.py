"""End-to-end scenarios for the idempotent fetch service.

Each module drives the handler or the HTTP app through one aspect of
duplicate-request handling: replay, in-progress conflicts, concurrency,
expiry, recovery from failed or killed invocations and invocation
deadlines.
"""
