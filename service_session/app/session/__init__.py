"""
Session records, the cookie carrier and the validity state machine.
"""
