"""
Tests for the IB connection module

Covers the transport adapter, error classification, the reconnect
supervisor, the heartbeat prober and the connection tools facade. Everything
except test_gateway_integration runs against an in-memory transport.
"""
