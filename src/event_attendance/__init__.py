"""Event Attendance package.

This package is organized by feature modules (events, attendance, scheduling, ...)
with a thin Flask controller layer and service/repository layers underneath.
"""
