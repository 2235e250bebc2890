"""
Offline crag packs.

A downloaded crag is kept in a local SQLite key-value store (metadata, crag
record and image records) plus a binary asset cache holding the rendered map
screenshot and the route photos, so it can be browsed without a network.
"""
