"""
Astronomer gateway service.
"""
