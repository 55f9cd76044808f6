"""
Request validation for the Gateway.
"""

from .validator import RequestValidator, check_param

__all__ = ["RequestValidator", "check_param"]
