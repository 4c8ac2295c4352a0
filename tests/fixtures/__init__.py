"""
Test Fixtures Package

Reusable mock infrastructure for external dependencies:
- Fake credential verifier and request addresses
- Redis client mocks with a registered Lua script
- Supabase RPC client mocks

Usage:
    from tests.fixtures.login_fixtures import FakeVerifier, CLIENT_IP
    from tests.fixtures.store_fixtures import create_mock_redis_client, create_mock_supabase_client
"""
