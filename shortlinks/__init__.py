"""Multi-tenant URL shortener: allocation, redirects, cache coherence and click recording."""
