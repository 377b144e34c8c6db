"""Cramly: turn study material into flashcards and review them."""

__version__ = '1.0.0'
