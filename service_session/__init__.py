"""
Secure session service package.
"""
