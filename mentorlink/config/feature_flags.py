"""
Feature Flags Configuration

Centralized feature flag management.
All feature flags are loaded from environment variables.
"""
import os


def get_bool_env(key: str, default: bool = False) -> bool:
    """Get a boolean value from environment variable."""
    value = os.getenv(key, str(default)).lower()
    return value in ('true', '1', 'yes', 'on', 'enabled')


class FeatureFlags:
    """
    Feature flags for the application.

    Flags are read when the class body is evaluated; tests override
    them with monkeypatch.setattr on the shared instance.
    """

    # Session status may only move scheduled -> live -> completed|cancelled
    FEATURE_ENFORCE_STATUS_ORDER: bool = get_bool_env('FEATURE_ENFORCE_STATUS_ORDER', True)

    # Chat / code events honour allow_chat, allow_collab and can_edit
    FEATURE_ENFORCE_COLLAB_PERMISSIONS: bool = get_bool_env('FEATURE_ENFORCE_COLLAB_PERMISSIONS', False)


# Singleton instance for easy importing
feature_flags = FeatureFlags()
