"""
Endpoint contracts for the usage API.
"""

from .handlers import ApiResponse, UsageAPI, build_api

__all__ = ["ApiResponse", "UsageAPI", "build_api"]
