"""
Logging and redaction utilities.
"""
