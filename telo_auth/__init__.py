"""Telo session and authentication lifecycle manager."""
