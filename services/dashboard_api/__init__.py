"""
Dashboard API Service for the devlog bot.

HTTP surface for repository management, commit sync, devlog drafting and
Hive publishing, plus the ``devlog`` command line client.
"""

__version__ = "1.0.0"
__description__ = "Devlog dashboard API"
