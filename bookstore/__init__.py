"""Bookstore order processing service."""
