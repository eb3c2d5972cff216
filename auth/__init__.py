"""auth/ -- First-party credentials and sessions for Fragrance Collect.

Password hashing, the durable user/session store, the Session Manager, and the
account service that turns a password or a verified identity into a session.

Layer rule: auth/ imports only stdlib, third-party libraries, core/, and
identity/. It does NOT import from api/. api/ imports from auth/, not the
other way around.
"""
