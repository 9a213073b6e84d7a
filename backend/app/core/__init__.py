# app/core/__init__.py
"""
Core application modules.
Contains the services behind the REST and WebSocket routes:
- accounts: Account lookup across the student, faculty and admin tables
- bootstrap: Default admin creation
- chat / chat_store / pubsub: Realtime chat coordination, persistence and fan-out
- db: Database configuration and connection management
- errors: Typed service failures and their HTTP rendering
- notify / recovery: OTP email delivery and the password recovery flow
- security: Password hashing and JWT access tokens
"""
