"""
Parks, lots and manager assignments.

Only the records the showing workflow relies on: which park a lot belongs to
and which manager answers for that park.
"""
