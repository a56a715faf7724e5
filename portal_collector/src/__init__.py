"""
Collector package for the Sunny Portal solar dashboard widget.

Authenticates against the Ennexos Sunny Portal with a cached session cookie,
probes the portal's undocumented endpoints for live production data,
extracts and classifies measurements, and hands a normalized record (or a
tagged error) to the dashboard widget.

CHANGELOG:
- 2026-10-06: Initial creation

TODO:
- None
"""
