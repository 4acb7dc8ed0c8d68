"""techNotes backend: users, their notes and authentication.

The ASGI application lives in :mod:`technotes.api` (``technotes.api:app``);
importing it creates the tables and the bootstrap admin, so it is not
imported here.
"""
