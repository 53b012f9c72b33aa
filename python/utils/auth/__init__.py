"""
Authentication providers for container registries.

This module provides authentication helpers for the migration destination:
- AWS ECR (Elastic Container Registry)
"""

from utils.auth.providers import authenticate_ecr, parse_ecr_region

__all__ = [
    "authenticate_ecr",
    "parse_ecr_region",
]
