from mentorlink.config.settings import Settings, get_settings
from mentorlink.config.feature_flags import FeatureFlags, feature_flags

__all__ = ["Settings", "get_settings", "FeatureFlags", "feature_flags"]
