"""Blog posts CRUD API backed by a document store."""
