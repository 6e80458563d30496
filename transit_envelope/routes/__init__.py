"""
API routers for the GDPR admin service.
"""
