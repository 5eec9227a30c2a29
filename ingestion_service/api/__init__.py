"""HTTP application, pipeline and server lifecycle."""
