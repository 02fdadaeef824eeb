"""Kling provider implementation.

Every job kind follows the same async pattern:
  sign credential → POST create task → poll status → resolve artifact URL
"""
