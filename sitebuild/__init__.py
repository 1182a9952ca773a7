"""
Static site generation for Perspective Poll.

Deterministically transforms a full snapshot of the topic store into:
  - index.html with the most recent topics pre-rendered as cards
  - one topics/<slug>.html page per topic, with Open Graph tags and the
    topic record embedded as JSON for client-side hydration

Every run rebuilds the output directory from scratch.
"""

__version__ = "0.1.0"
