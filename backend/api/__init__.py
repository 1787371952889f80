"""
API package - request contracts and global middleware.

- contracts: pydantic models for worker request bodies
- middleware: request id injection, error envelope, worker token check
"""
