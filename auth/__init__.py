"""auth/ -- Authentication and authorization package for Kavyakala.

Layer rule: auth/ imports only stdlib, third-party libraries and core/.
It does NOT import from api/ or notify/ at runtime.
api/ imports from auth/, not the other way around.
"""
