"""auth/ -- Authentication, session and authorization package.

Layer rule: auth/ imports only stdlib, third-party libraries and core/.
It does NOT import from api/ or expenses/.
api/ and expenses/ import from auth/, not the other way around.
"""
