"""
Envelope encryption services: transit client, materials providers and crypto primitives.
"""
