"""Webhook intake and reliable-delivery service."""
