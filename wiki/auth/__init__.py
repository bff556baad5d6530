"""
Authentication for the wiki.

Design goals:
- Exactly one strategy per deployment (username/password or OpenID Connect).
- Strategies keep their state in the visitor session as plain records.
- Failures degrade to "not authenticated" with an optional message; nothing raises to the caller.
"""
