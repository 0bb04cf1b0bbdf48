"""Portfolio booking API: paid consultation bookings with PhonePe payment reconciliation."""

__version__ = "1.0.0"
