"""auth/ -- Authentication package for SnippetVault.

Layer rule: auth/ imports only stdlib, third-party libraries, and core/.
It does NOT import from api/, library/, or cache/.
api/ imports from auth/, not the other way around.
"""
