# Middleware package init
"""
Web Audit API — Middleware Package
====================================

Request → [Rate Limit] → [Request ID] → [Access Log] → [GZip] → [CORS] → route

Rate limiting runs first so rejected requests cost nothing. The request id
is set before the access log line is written so the two correlate. Note
the 429 body is produced before the request id middleware runs, so it
carries an empty request_id.
"""
