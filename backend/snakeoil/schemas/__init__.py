"""Request/response schemas for the HTTP shell."""
