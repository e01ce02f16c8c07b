"""
API routes module.

This module contains the routes of the application: the authentication routes
and the settings routes (two-factor authentication, email change).

@file: ./epic_auth/api/routes/__init__.py
@date: 10/18/2026
"""
