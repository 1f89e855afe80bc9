"""Attendance module — clock events and work schedules."""
