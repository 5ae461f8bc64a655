"""auth/ -- Credential and session token package for credgate.

Layer rule: auth/ imports stdlib, third-party libraries, and core/.
It does NOT import from api/ (auth/dependencies.py and auth/gate.py use
fastapi directly, not the api package). api/ imports from auth/, not the
other way around.
"""
