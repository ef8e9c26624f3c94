"""library/ -- Snippets, collections and tags: persistence, access rules, search, import/export.

Layer rule: library/ imports only stdlib, third-party libraries, and core/.
It does NOT import from api/, auth/, or cache/.
"""
