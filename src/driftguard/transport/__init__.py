"""HTTP transport collaborators."""
