"""Collection registry — discovery, loading, and hot reload.

``CollectionFinder`` turns manifest globs into descriptors,
``CollectionLoader`` turns descriptors into collections, and
``CollectionWatcher`` keeps both current while the app runs.
"""
