"""Unit tests for agentcore-stack.

Unit tests verify individual components in isolation using mocks.
No AWS account or external tools are required.

Run with: pytest tests/unit/ -v
"""
