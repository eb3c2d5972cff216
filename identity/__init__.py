"""identity/ -- Third-party identity token verification for Fragrance Collect.

Verifies Google Sign-In ID tokens end-to-end (decode, key lookup, RS256
signature, claims) and projects them into a NormalizedIdentity.

Layer rule: identity/ imports only stdlib, third-party libraries, and core/.
It does NOT import from api/ or auth/. auth/ and api/ consume identity/.
"""
