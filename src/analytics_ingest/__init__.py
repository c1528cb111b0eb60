"""Multi-tenant ingestion API with HMAC-signed device requests."""
