from mentorlink.routes import profile, sessions

__all__ = ["profile", "sessions"]
