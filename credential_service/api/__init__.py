"""HTTP transport for the credential manager."""
