"""auth/ -- Authentication and session management package for Snipshare.

Layer rule: auth/ imports only stdlib + third-party libraries, plus core/
for settings. It does NOT import from api/ or web/.
api/ and web/ import from auth/, not the other way around.
"""
