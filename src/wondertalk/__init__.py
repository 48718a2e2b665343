"""WonderTalk - photograph something, then talk with it.

A discovery service for children: a photo becomes a moderated, voiced,
multi-turn conversation with the thing (or person) it shows.
"""

__version__ = "0.1.0"
