"""Conversation summaries and company analytics."""

from .summarizer import LexiconSentimentClassifier, SentimentClassifier, Summarizer

__all__ = ["LexiconSentimentClassifier", "SentimentClassifier", "Summarizer"]
