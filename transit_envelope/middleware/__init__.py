"""
HTTP middleware for the GDPR admin service.
"""
