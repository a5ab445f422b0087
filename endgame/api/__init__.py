"""API router package for the Endgame backend."""

from endgame.api import auth, feed, notifications, posts, profiles, realtime

__all__ = ["auth", "feed", "notifications", "posts", "profiles", "realtime"]
