"""Consensus reviewer for GitLab merge requests."""
