"""HTTP surface of the push server."""
