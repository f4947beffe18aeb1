"""auth/ -- API-key authentication and permission authorization for the Check-In API.

Layer rule: auth/ imports only stdlib, third-party libraries, and core/.
It does NOT import from api/, listing/, or records/.
api/ imports from auth/, not the other way around.
"""
