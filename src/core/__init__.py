"""Core domain package for rxrelay.

Core contains link rewriting, the event processor and the ports it relies on,
without any Discord or storage-specific code, keeping the business logic
portable.
"""
