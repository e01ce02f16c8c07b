"""
Schemas for the application.

This module contains the pydantic models for the application. The models
include the User and the Verification request/response models.

@file: ./epic_auth/templates/schemas/__init__.py
@date: 10/18/2026
"""
