"""
Commit Sync Service for the devlog bot.

This service is responsible for:
- Fetching commit history from GitHub since each repository's checkpoint
- Deduplicating fetched commits against the commit store
- Advancing per-repository and global sync checkpoints
"""

__version__ = "1.0.0"
__description__ = "Incremental commit synchronization"
