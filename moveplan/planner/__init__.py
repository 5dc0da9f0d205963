"""Availability planning: candidate walk and workout slots for a day."""
