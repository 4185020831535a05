"""Tests for contracts package.

Unit tests for the shared contract types: errors and their categories,
result containers, field names, and the rule that contracts import
nothing from the rest of casebook.
"""
