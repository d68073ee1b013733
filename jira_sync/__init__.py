"""
Jira Incremental Sync
Pulls issues updated inside a time window from Jira and upserts them into an analytical table.
"""

__version__ = '1.0.0'
