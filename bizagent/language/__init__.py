"""Fixed-vocabulary text for the business agent.

- Ukrainian agent replies (replies_uk.py)
"""

from .replies_uk import get_reply_text

__all__ = ['get_reply_text']
