"""HQ Rentals webhook inbound system.

Receives partner event notifications (reservations, vehicles, payments).
Each webhook is signature-verified, validated, deduplicated, and dispatched.
"""
