"""auth/ -- Authentication and authorization package for Tourbook.

Layer rule: auth/ imports from core/ and docstore/ only.
It does NOT import from api/.
api/ imports from auth/, not the other way around.
"""
