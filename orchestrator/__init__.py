"""Booking workflow and command line entry point."""
