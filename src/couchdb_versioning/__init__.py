"""Keep CouchDB design documents and data documents under version control."""

__version__ = "1.0.0"
