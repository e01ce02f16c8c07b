"""
Core module for the application.

This module contains the core logic for the application, including the
config, db, email, security, one-time codes and verification flows modules.

@file: ./epic_auth/core/__init__.py
@date: 10/18/2026
"""
