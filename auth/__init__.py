"""auth/ -- Identity, session tokens and organization-scoped access decisions.

Layer rule: auth/ may import from core/ and third-party libraries.
It does NOT import from api/, cache/, or search/.
api/ and search/ import from auth/, not the other way around.
"""
