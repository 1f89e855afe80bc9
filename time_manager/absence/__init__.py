"""Absence module — absence requests, their days and lifecycle."""
