"""Authentication module.

Sessions are opened by username (no password) and identified afterwards by
an opaque bearer token.

Dependencies:
    - get_current_user: Resolves the caller's profile or raises 401.
"""
