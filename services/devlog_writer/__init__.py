"""
Devlog Writer Service for the devlog bot.

Turns a window of stored commits into a structured blog post draft with an
OpenAI chat model, and rewrites drafts on request.
"""

__version__ = "1.0.0"
__description__ = "AI devlog drafting"
