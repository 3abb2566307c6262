"""
Event Map → GitHub Sync

Renders the event catalog to a canonical Markdown document and mirrors it
to a file in a GitHub repository through a GitHub App installation.
"""

__version__ = "1.0.0"
