"""
Needle - Attention triage for your GitHub pull requests.

A terminal dashboard that:
1. Pulls the PRs you authored and the PRs waiting on your review
2. Scores each one by urgency (review requests, CI failures, stale approvals)
3. Remembers what it has already shown you, so only new events alert
4. Refreshes in the background while you navigate

Usage:
    needle                # Live dashboard
    needle --demo         # Dashboard with synthetic data (no token needed)
    needle list           # Print the ranked list once
    needle init           # Write a sample config file
"""

__version__ = "0.1.0"
__author__ = "Needle"
