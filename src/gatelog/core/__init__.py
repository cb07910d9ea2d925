"""
Core components.

This package contains the access logging pipeline:
- Correlation id and identity resolution
- Body capture and replay
- Header and body redaction
- Access log emission
- The exchange interceptor tying them together
- Upstream forwarding and metrics
"""
