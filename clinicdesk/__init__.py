"""Clinic desk: patient, appointment and balance views over the clinic API."""

__version__ = "0.1.0"
