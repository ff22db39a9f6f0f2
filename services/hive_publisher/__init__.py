"""
Hive Publisher Service for the devlog bot.

Broadcasts finished posts to the Hive blockchain and derives their permlinks.
"""

__version__ = "1.0.0"
__description__ = "Hive post publishing"
