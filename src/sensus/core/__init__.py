"""Core domain package for sensus.

Core contains classification, rate limiting, and pairing logic without any
HTTP, SQLite or file-format specific code, keeping the business logic portable.
"""
