"""Logging and text helpers."""
