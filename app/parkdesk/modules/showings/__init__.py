"""
Showing booking for lots.

- Slot availability is recomputed from scratch on every request (resolver.py)
- Bookings re-check the requested slot against the same resolver
- Manager calendar sync is best-effort; failures are flagged on the showing
"""
