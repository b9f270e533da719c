"""
braindump – turn a recorded brainstorming session into structured insights.

The package contains the HTTP backend (transcription and structuring
proxies, upload broker, saved sessions) and the client side that drives a
session through setup, audio, transcription and structuring.
"""
