"""Semantic search over a catalog of books"""
